import re
from datetime import datetime, timedelta

MAX_INPUT_LENGTH = 100
MS_PER_SECOND = 1000

_STRIPPED_CHARS = re.compile(r"[<>\"']")
_WHITESPACE = re.compile(r"\s+")


# Simply returns the current local time as an aware datetime.
def now_local():
    return datetime.now().astimezone()

# Simply returns the current local time as an ISO8601 string with timezone offset.
def now_iso():
    return now_local().isoformat()


# Trims, strips the markup-ish characters and truncates to the max length. Anything that isn't a string is "".
def sanitize_input(value, max_length=MAX_INPUT_LENGTH):
    if not isinstance(value, str):
        return ""
    cleaned = _STRIPPED_CHARS.sub("", value.strip())
    if max_length is not None:
        cleaned = cleaned[:max_length]
    return cleaned

# Notes are free text, so they only lose the stripped characters, never length.
def sanitize_notes(value):
    if not isinstance(value, str):
        return ""
    return _STRIPPED_CHARS.sub("", value)


# Splits a "Project / Task" topic on the first slash, falling back to placeholder names for missing halves.
# Returns None when there's nothing usable at all.
def parse_topic(topic):
    full_topic = sanitize_input(topic)
    if not full_topic:
        return None
    project, _, task = full_topic.partition("/")
    return sanitize_input(project) or "Uncategorized", sanitize_input(task) or "Task"

# Case and whitespace insensitive key used for duplicate detection.
def running_key(project, task):
    def _norm(part):
        return _WHITESPACE.sub(" ", part.strip()).lower()
    return f"{_norm(project)}:{_norm(task)}"


# Whole milliseconds between two aware datetimes, never negative.
def ms_between(start, end):
    return max(0, (end - start) // timedelta(milliseconds=1))

# Rounds milliseconds to whole seconds, halves going up.
def round_seconds(ms):
    return (int(ms) + MS_PER_SECOND // 2) // MS_PER_SECOND

# Format elapsed seconds as HH:MM:SS. Negative values clamp to zero.
def format_time(seconds):
    seconds = max(0, int(seconds))
    h, rem = divmod(seconds, 3600)
    m, s = divmod(rem, 60)
    return f"{h:02d}:{m:02d}:{s:02d}"
