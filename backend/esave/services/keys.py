from __future__ import annotations


def composite_key(*parts: str | int) -> str:
    """
    Canonical map key for a tuple of identifiers.

    Each part is length-prefixed (``<len>:<text>,``) so the encoding is
    injective even when a participant id contains ``-``, ``:`` or ``,``.

    Examples:
        >>> composite_key(1, "ST2USER")
        '1:1,7:ST2USER,'
        >>> composite_key(1, "2-x") != composite_key("1-2", "x")
        True
    """
    if not parts:
        raise ValueError("composite_key needs at least one part")
    out = []
    for p in parts:
        if isinstance(p, bool) or not isinstance(p, (str, int)):
            raise TypeError(f"unsupported key part: {p!r}")
        s = str(p)
        out.append(f"{len(s)}:{s},")
    return "".join(out)
