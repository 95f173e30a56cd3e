_AWS_TAG_KEY_MAX_LENGTH = 128
_AWS_TAG_VALUE_MAX_LENGTH = 256
_WHITESPACE = (" ", "\t", "\n", "\r")


def _check_tag_part(part: str, what: str, limit: int, key: str) -> None:
    if not part:
        msg = f"LB tag {what} must not be empty: key={key!r}"
        raise ValueError(msg)
    if len(part) > limit:
        msg = f"LB tag {what} exceeds AWS {limit}-character limit ({len(part)} chars): key={key!r}"
        raise ValueError(msg)
    if "," in part or "=" in part:
        msg = f"LB tag {what} contains invalid characters (comma or equals): {part!r}"
        raise ValueError(msg)
    if any(c in part for c in _WHITESPACE):
        msg = f"LB tag {what} contains whitespace: {part!r}"
        raise ValueError(msg)


def format_lb_tags(tags: dict[str, str]) -> str:
    """Format tags as the comma-separated key=value list the AWS LB Controller reads from
    service annotations. Commas, equals signs and whitespace cannot be represented there."""
    if not tags:
        msg = "tags must not be empty"
        raise ValueError(msg)

    for key, value in tags.items():
        if key.startswith("aws:"):
            msg = f"LB tag key uses reserved 'aws:' prefix: {key!r}"
            raise ValueError(msg)
        _check_tag_part(key, "key", _AWS_TAG_KEY_MAX_LENGTH, key)
        _check_tag_part(value, "value", _AWS_TAG_VALUE_MAX_LENGTH, key)

    return ",".join(f"{k}={v}" for k, v in tags.items())
