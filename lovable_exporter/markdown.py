"""Convert the chat's rich-text fragments to Markdown.

Only the shapes the chat emits are handled. Children are converted first
and each element wraps the result; unknown elements pass their children
through so no descendant text is lost.
"""

import re

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString

LANGUAGE_RE = re.compile(r"language-(\w+)")
HEADING_LEVELS = {"h1": 1, "h2": 2, "h3": 3, "h4": 4}


def collapse_blank_lines(text: str) -> str:
    return re.sub(r"\n{3,}", "\n\n", text)


def _children(node: Tag) -> str:
    return "".join(convert_node(child) for child in node.children)


def _code_language(code_el) -> str:
    if code_el is None:
        return ""
    for cls in code_el.get("class") or []:
        match = LANGUAGE_RE.match(cls)
        if match:
            return match.group(1)
    return ""


def _is_blank(node) -> bool:
    return isinstance(node, NavigableString) and not node.strip()


def _ordered_list(node: Tag) -> str:
    parts = []
    number = 0
    for child in node.children:
        if _is_blank(child):
            continue
        if isinstance(child, Tag) and child.name == "li":
            number += 1
            item = convert_node(child).rstrip("\n")
            parts.append(f"{number}. {item}\n")
        else:
            parts.append(convert_node(child))
    return "".join(parts) + "\n"


def _list_item(content: str) -> str:
    if not content.endswith("\n"):
        content += "\n"
    return f"- {content}"


def convert_node(node) -> str:
    if isinstance(node, PreformattedString):
        # comments, doctypes, CDATA
        return ""
    if isinstance(node, NavigableString):
        return str(node)
    if not isinstance(node, Tag):
        return ""

    tag = node.name
    if tag == "pre":
        code_el = node.find("code")
        code = code_el.get_text() if code_el is not None else node.get_text()
        return f"```{_code_language(code_el)}\n{code}\n```\n\n"
    if tag == "ol":
        return _ordered_list(node)
    if tag == "ul":
        return "".join(convert_node(c) for c in node.children if not _is_blank(c)) + "\n"
    if tag == "br":
        return "\n"
    if tag == "hr":
        return "---\n\n"

    content = _children(node)
    if tag == "p":
        return content + "\n\n"
    if tag in ("strong", "b"):
        return f"**{content}**"
    if tag in ("em", "i"):
        return f"*{content}*"
    if tag == "code":
        if node.find_parent("pre") is not None:
            return content
        return f"`{content}`"
    if tag in HEADING_LEVELS:
        return f"{'#' * HEADING_LEVELS[tag]} {content}\n\n"
    if tag == "li":
        return _list_item(content)
    if tag == "a":
        return f"[{content}]({node.get('href') or '#'})"
    if tag == "blockquote":
        quoted = content.rstrip("\n").replace("\n", "\n> ")
        return f"> {quoted}\n\n"
    return content


def html_to_markdown(markup: str) -> str:
    if not markup:
        return ""
    soup = BeautifulSoup(markup, "html.parser")
    return collapse_blank_lines(_children(soup)).strip()
