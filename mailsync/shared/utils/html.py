"""Plain-text extraction from HTML message bodies."""

import re

from bs4 import BeautifulSoup, Comment

NON_TEXT_TAGS = ["script", "style", "head", "meta", "link", "title"]
BLOCK_TAGS = ["p", "div", "li", "tr", "table", "h1", "h2", "h3", "h4", "h5", "h6", "blockquote"]

_SPACES = re.compile(r"[^\S\n]+")
_BLANK_LINES = re.compile(r"\n\s*\n+")


def strip_html(value: str) -> str:
    """
    Convert an HTML body to plain text.

    Drops script/style/head content and comments, turns <br> and block
    boundaries into line breaks, and collapses whitespace.
    """
    if not value:
        return value

    soup = BeautifulSoup(value, "html.parser")

    for tag in soup(NON_TEXT_TAGS):
        tag.decompose()
    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()

    for br in soup.find_all("br"):
        br.replace_with("\n")
    for block in soup.find_all(BLOCK_TAGS):
        block.append("\n")

    text = soup.get_text()
    text = _SPACES.sub(" ", text)
    text = _BLANK_LINES.sub("\n\n", text)
    return "\n".join(line.strip() for line in text.split("\n")).strip()
