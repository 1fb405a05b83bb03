from __future__ import annotations

from bs4 import BeautifulSoup, Comment


def clean_fragment(html: str) -> str:
    """
    Strip script elements, style elements and comment nodes, in that order.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    for tag in soup.find_all("script"):
        tag.decompose()
    for tag in soup.find_all("style"):
        tag.decompose()
    for node in soup.find_all(string=lambda s: isinstance(s, Comment)):
        node.extract()
    return str(soup)
