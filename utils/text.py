"""Text helpers: output truncation, secret redaction, commit / PR wording."""

from config.defaults import DEFAULTS

REDACTED = "***"


def truncate(text, limit=None):
    """Keep the tail of *text* when it exceeds *limit* characters.

    The tail is kept because failures are usually reported last.
    """
    if limit is None:
        limit = DEFAULTS["output_limit"]
    if not text or len(text) <= limit:
        return text or ""
    dropped = len(text) - limit
    return f"[... {dropped} characters truncated ...]\n" + text[-limit:]


def redact(text, secrets):
    """Replace every occurrence of each secret value with ***."""
    if not text:
        return text or ""
    for secret in secrets or ():
        if secret:
            text = text.replace(secret, REDACTED)
    return text


def first_line(text):
    for line in (text or "").splitlines():
        if line.strip():
            return line.strip()
    return ""


def commit_message(instruction, max_subject=None, trailer=None):
    """Derive ``feat: <instruction>`` with a bounded subject and a provenance trailer."""
    if max_subject is None:
        max_subject = DEFAULTS["commit_subject_max"]
    if trailer is None:
        trailer = DEFAULTS["commit_trailer"]

    subject = f"feat: {first_line(instruction)}"
    if len(subject) > max_subject:
        subject = subject[: max_subject - 3].rstrip() + "..."

    body = instruction.strip()
    if body == first_line(instruction) and not subject.endswith("..."):
        return f"{subject}\n\n{trailer}"
    return f"{subject}\n\n{body}\n\n{trailer}"


def pull_request_title(instruction, title=None):
    if title and title.strip():
        return title.strip()
    return commit_message(instruction).splitlines()[0]


def pull_request_body(instruction, description=None):
    if description and description.strip():
        return description.strip()
    return (
        "Automatic implementation via agent-webhook.\n\n"
        f"Instruction:\n\n{instruction.strip()}\n"
    )
