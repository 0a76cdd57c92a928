"""Turn one rendered message node into a MessageRecord.

Everything that depends on the host page's class names lives here and in
the scroll-container hints, so a redesign of the chat UI only touches
``FragmentSelectors``.
"""

import re
from dataclasses import dataclass, fields
from typing import Optional

from bs4 import Tag

from .store import ASSISTANT, USER, MessageRecord

# Fixed by the host's id scheme, deliberately not configurable
USER_ID_PREFIXES = ("umsg_", "user-msg")

TOP_RE = re.compile(r"(?:^|;)\s*top\s*:\s*([-+]?\d*\.?\d+)", re.I)
TRANSLATE_Y_RE = re.compile(r"translate(?:Y|3d)\(\s*(?:[-+]?[\d.]+px\s*,\s*)?([-+]?\d*\.?\d+)", re.I)


@dataclass(frozen=True)
class FragmentSelectors:
    message: str = "[data-message-id]"
    date_label: str = ".text-muted-foreground.font-medium"
    user_prose: str = ".PromptBox_customProse__le_d3, .prose"
    prose: str = ".prose"
    status_label: str = "button .truncate"

    @classmethod
    def from_config(cls, section: Optional[dict]) -> "FragmentSelectors":
        if not section:
            return cls()
        names = {f.name for f in fields(cls)}
        return cls(**{k: str(v) for k, v in section.items() if k in names and v})


DEFAULT_SELECTORS = FragmentSelectors()


def classify_role(message_id: str) -> str:
    return USER if message_id.startswith(USER_ID_PREFIXES) else ASSISTANT


def extract_sort_key(tag: Tag) -> float:
    """Vertical offset from the inline style the virtual list positions nodes with."""
    style = tag.get("style") or ""
    match = TOP_RE.search(style) or TRANSLATE_Y_RE.search(style)
    if not match:
        return 0.0
    try:
        return float(match.group(1))
    except ValueError:
        return 0.0


def extract_timestamp(tag: Tag, selectors: FragmentSelectors = DEFAULT_SELECTORS) -> str:
    date_el = tag.select_one(selectors.date_label)
    if date_el is None:
        return ""
    time_el = date_el.find_next_sibling()
    parts = [date_el.get_text().strip(), time_el.get_text().strip() if time_el else ""]
    return " ".join(p for p in parts if p)


def extract_status_labels(tag: Tag, selectors: FragmentSelectors = DEFAULT_SELECTORS) -> list[str]:
    labels = []
    for el in tag.select(selectors.status_label):
        text = el.get_text().strip()
        if text and text not in labels:
            labels.append(text)
    return labels


def parse_fragment(tag: Tag, selectors: FragmentSelectors = DEFAULT_SELECTORS) -> Optional[MessageRecord]:
    """Parse one candidate node; None when it has no usable identity."""
    message_id = (tag.get("data-message-id") or tag.get("id") or "").strip()
    if not message_id:
        return None

    role = classify_role(message_id)
    markup, text = "", ""

    if role == USER:
        prose = tag.select_one(selectors.user_prose)
        if prose is not None:
            markup = prose.decode_contents()
            text = prose.get_text().strip()
    else:
        blocks = tag.select(selectors.prose)
        markup = "\n".join(b.decode_contents() for b in blocks if b.get_text().strip())
        if blocks:
            text = "\n\n".join(b.get_text().strip() for b in blocks)
        else:
            text = tag.get_text().strip()
        # "Thought for 4s" / "2 tools used" annotations; text only, never markup
        labels = extract_status_labels(tag, selectors)
        if labels:
            text = f"[{' · '.join(labels)}]\n\n{text}"

    return MessageRecord(
        id=message_id,
        role=role,
        timestamp_text=extract_timestamp(tag, selectors),
        sort_key=extract_sort_key(tag),
        content_markup=markup,
        content_text=text,
    )
