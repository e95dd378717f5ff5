from .misc import (
    MAX_INPUT_LENGTH,
    MS_PER_SECOND,
    format_time,
    ms_between,
    now_iso,
    now_local,
    parse_topic,
    round_seconds,
    running_key,
    sanitize_input,
    sanitize_notes,
)
