# knowledge/cleaner.py
"""
Cleaner module: extracts readable text from raw HTML.
"""

import re

from bs4 import BeautifulSoup

UNWANTED_SELECTORS = [
    "nav",
    "footer",
    "header",
    "aside",
    "script",
    "style",
    "noscript",
    "template",
    "svg",
    "iframe",
    "form",
    "[role='navigation']",
    "[aria-label*='cookie']",
    ".cookie",
    ".cookies",
    ".cookie-banner",
    ".cookie-consent",
]

BLOCK_TAGS = ["p", "li", "h1", "h2", "h3", "h4", "h5", "h6", "td", "th", "dt", "dd", "blockquote", "pre"]


def clean_html(html_content: str) -> str:
    """Extract clean text from HTML."""
    soup = BeautifulSoup(html_content, "html.parser")

    for tag in soup.select(", ".join(UNWANTED_SELECTORS)):
        tag.decompose()

    # Prefer block-level text; pages built from bare divs fall back to all text
    text_blocks = []
    for block in soup.find_all(BLOCK_TAGS):
        block_text = block.get_text(" ", strip=True)
        if block_text and block_text not in text_blocks:
            text_blocks.append(block_text)

    if text_blocks:
        cleaned_text = "\n".join(text_blocks)
    else:
        cleaned_text = soup.get_text("\n", strip=True)

    cleaned_text = re.sub(r"[ \t\r\f\v]+", " ", cleaned_text)
    cleaned_text = re.sub(r"\n{2,}", "\n", cleaned_text)

    return cleaned_text.strip()

