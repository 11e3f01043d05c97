import re

_CUE_TIMING = re.compile(r"-->")
_CUE_NUMBER = re.compile(r"^\d+$")
_VOICE_TAG = re.compile(r"^<v(?:\.[^\s>]*)?\s+([^>]+)>(.*)$")
_ANY_TAG = re.compile(r"<[^>]+>")
_SPEAKER_PREFIX = re.compile(r"^([^:]{1,80}):\s+(.+)$")


def vtt_to_text(vtt_content: str) -> str:
    """Converts WebVTT captions into ``Speaker: text`` lines.

    Zoom writes speakers either as ``<v Name>`` voice tags or as a ``Name: ``
    prefix on the cue text. Consecutive cues from the same speaker are merged
    onto one line, and a cue repeating the previous text is dropped.
    """
    lines: list[str] = []
    current_speaker: str | None = None
    last_text: str | None = None
    in_note_block = False

    for raw_line in vtt_content.splitlines():
        line = raw_line.strip()
        if not line:
            in_note_block = False
            continue
        if line.startswith("WEBVTT") or _CUE_TIMING.search(line) or _CUE_NUMBER.match(line):
            continue
        if line.startswith("NOTE") or in_note_block:
            in_note_block = True
            continue

        speaker, text = _split_speaker(line)
        if not text or text == last_text:
            continue

        if speaker and speaker == current_speaker and lines:
            lines[-1] = f"{lines[-1]} {text}"
        elif speaker:
            lines.append(f"{speaker}: {text}")
        else:
            lines.append(text)
        current_speaker = speaker
        last_text = text

    return "\n".join(lines)


def _split_speaker(line: str) -> tuple[str | None, str]:
    voice_match = _VOICE_TAG.match(line)
    if voice_match:
        speaker = voice_match.group(1).strip()
        text = _ANY_TAG.sub("", voice_match.group(2)).strip()
        return speaker or None, text

    cleaned = _ANY_TAG.sub("", line).strip()
    prefix_match = _SPEAKER_PREFIX.match(cleaned)
    if prefix_match:
        return prefix_match.group(1).strip(), prefix_match.group(2).strip()
    return None, cleaned
