# relay-admin services
# Kept import-free: schemas import relay_admin.services.port_range.
