"""Port range strings, e.g. ``"1000-2000,3000"``.

Two entry points share one tokenizer:

- ``parse_port_range`` is lenient: tokens it cannot read are skipped, so a
  badly configured node simply offers fewer ports.
- ``validate_port_spec`` is strict: used on write paths to reject a spec
  before it reaches the store.
"""

MIN_PORT = 1
MAX_PORT = 65535


class PortRangeError(ValueError):
    """Raised by validate_port_spec for a malformed port range."""


def _to_port(text: str) -> int | None:
    text = text.strip()
    if not text.isdigit():
        return None
    value = int(text)
    if value < MIN_PORT or value > MAX_PORT:
        return None
    return value


def _token_bounds(token: str) -> tuple[int, int] | None:
    """Return inclusive (start, end) for one token, or None if unreadable.

    A missing or unreadable end falls back to the start.
    """
    if "-" in token:
        start_text, end_text = token.split("-", 1)
        start = _to_port(start_text)
        if start is None:
            return None
        end = _to_port(end_text)
        return start, start if end is None else end
    start = _to_port(token)
    if start is None:
        return None
    return start, start


def parse_port_range(spec: str | None) -> list[int]:
    """Expand a port spec into a sorted, deduplicated list of ports.

    >>> parse_port_range("80,90-92,80")
    [80, 90, 91, 92]
    """
    if not spec:
        return []
    ports: set[int] = set()
    for token in spec.split(","):
        token = token.strip()
        if not token:
            continue
        bounds = _token_bounds(token)
        if bounds is None:
            continue
        start, end = bounds
        # reversed ranges denote nothing
        ports.update(range(start, end + 1))
    return sorted(ports)


def validate_port_spec(spec: str) -> str:
    """Check every token of ``spec`` and return it normalized (no blanks)."""
    tokens = [t.strip() for t in spec.split(",") if t.strip()]
    if not tokens:
        raise PortRangeError("Port range is empty")

    for token in tokens:
        if "-" in token:
            start_text, end_text = token.split("-", 1)
            start, end = _to_port(start_text), _to_port(end_text)
            if start is None or end is None:
                raise PortRangeError(
                    f"Invalid port range '{token}': ports must be {MIN_PORT}-{MAX_PORT}"
                )
            if end < start:
                raise PortRangeError(f"Invalid port range '{token}': end is before start")
        elif _to_port(token) is None:
            raise PortRangeError(f"Invalid port '{token}': ports must be {MIN_PORT}-{MAX_PORT}")

    return ",".join(tokens)
