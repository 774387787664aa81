"""Byte size formatting helpers."""

_BINARY_UNITS = ("KiB", "MiB", "GiB", "TiB")

MIB = 1024 * 1024


def format_bytes(num_bytes: int, fraction_digits: int = 1) -> str:
    """Human-readable binary size, e.g. ``1.5 GiB`` or ``512 Byte``.

    Trailing zeros of the fraction are dropped (``2 GiB``, not ``2.0 GiB``).
    """
    if num_bytes < 1024:
        return f"{num_bytes} Byte"

    value = float(num_bytes)
    unit = _BINARY_UNITS[0]
    for unit in _BINARY_UNITS:
        value /= 1024
        if value < 1024:
            break

    text = f"{value:.{fraction_digits}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return f"{text} {unit}"
