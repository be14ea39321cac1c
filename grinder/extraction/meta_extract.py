"""Page metadata (title, description, dates, author...) from article HTML."""

from __future__ import annotations

import html as html_lib
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional

from bs4 import BeautifulSoup

from grinder.extraction.text_extract import iter_json_ld

logger = logging.getLogger(__name__)

MAX_META_HTML_CHARS = 750_000

TITLE_SELECTORS = (
    'meta[property="og:title"]',
    'meta[name="twitter:title"]',
    'meta[name="title"]',
    'meta[name="parsely-title"]',
    'meta[name="sailthru.title"]',
)
DESCRIPTION_SELECTORS = (
    'meta[property="og:description"]',
    'meta[name="description"]',
    'meta[name="twitter:description"]',
    'meta[name="sailthru.description"]',
)
KEYWORD_SELECTORS = (
    'meta[name="keywords"]',
    'meta[name="news_keywords"]',
    'meta[name="parsely-tags"]',
)
PUBLISHED_SELECTORS = (
    'meta[property="article:published_time"]',
    'meta[name="pubdate"]',
    'meta[name="publishdate"]',
    'meta[name="date"]',
    'meta[name="dc.date"]',
    'meta[name="dc.date.issued"]',
    'meta[name="datepublished"]',
)
MODIFIED_SELECTORS = (
    'meta[property="article:modified_time"]',
    'meta[property="og:updated_time"]',
    'meta[name="datemodified"]',
    'meta[name="dc.date.modified"]',
)
IMAGE_SELECTORS = (
    'meta[property="og:image"]',
    'meta[property="og:image:url"]',
    'meta[name="twitter:image"]',
    'meta[name="twitter:image:src"]',
)
AUTHOR_SELECTORS = (
    'meta[name="author"]',
    'meta[property="article:author"]',
    'meta[name="parsely-author"]',
    'meta[name="sailthru.author"]',
    'meta[name="byl"]',
)
SECTION_SELECTORS = (
    'meta[property="article:section"]',
    'meta[name="parsely-section"]',
    'meta[name="sailthru.section"]',
    'meta[name="section"]',
)
TAG_LIST_SELECTORS = (
    'meta[name="news_keywords"]',
    'meta[name="keywords"]',
    'meta[name="parsely-tags"]',
    'meta[name="sailthru.tags"]',
)


@dataclass(frozen=True)
class PageMeta:
    title: str = ""
    description: str = ""
    keywords: str = ""
    date: str = ""
    published_time: str = ""
    modified_time: str = ""
    canonical_url: str = ""
    image: str = ""
    author: str = ""
    site_name: str = ""
    section: str = ""
    type: str = ""
    locale: str = ""
    tags: str = ""
    lang: str = ""

    def as_dict(self) -> Dict[str, str]:
        return asdict(self)

    @property
    def empty(self) -> bool:
        return not any(asdict(self).values())


# PageMeta attribute -> Event meta column attribute
EVENT_META_FIELDS = {
    "title": "meta_title",
    "description": "meta_description",
    "keywords": "meta_keywords",
    "canonical_url": "meta_canonical_url",
    "image": "meta_image",
    "author": "meta_author",
    "site_name": "meta_site_name",
    "section": "meta_section",
    "tags": "meta_tags",
}

# PageMeta attribute -> Event working field
EVENT_FIELDS = {
    "title": "title_en",
    "date": "date",
    "canonical_url": "url",
    "description": "description",
    "keywords": "keywords",
}


def _clean(value: Optional[str]) -> str:
    return html_lib.unescape(value or "").strip()


def _content(node: Any) -> str:
    return _clean(node.get("content") or node.get("value") or "")


def read_meta(soup: BeautifulSoup, selectors: Iterable[str]) -> str:
    for selector in selectors:
        node = soup.select_one(selector)
        if node is None:
            continue
        content = _content(node)
        if content:
            return content
    return ""


def read_meta_all(soup: BeautifulSoup, selectors: Iterable[str]) -> List[str]:
    values = []
    for selector in selectors:
        for node in soup.select(selector):
            content = _content(node)
            if content:
                values.append(content)
    return values


def read_link(soup: BeautifulSoup, selector: str) -> str:
    node = soup.select_one(selector)
    if node is None:
        return ""
    return _clean(node.get("href"))


def split_tags(value: str) -> List[str]:
    return [item.strip() for item in (value or "").split(",") if item.strip()]


def normalize_meta_value(value: Any, keys: Iterable[str] = ()) -> str:
    """Flatten a JSON-LD value (string, list, nested object) to a string."""
    if not value:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float, bool)):
        return str(value)
    if isinstance(value, list):
        items = [normalize_meta_value(item, keys) for item in value]
        return ", ".join(item for item in items if item)
    if isinstance(value, dict):
        for key in keys:
            candidate = value.get(key)
            if isinstance(candidate, str) and candidate.strip():
                return candidate.strip()
        ident = value.get("@id") or value.get("id")
        if isinstance(ident, str) and ident.strip():
            return ident.strip()
        url = value.get("url") or value.get("contentUrl") or value.get("src") or value.get("href")
        if isinstance(url, str) and url.strip():
            return url.strip()
        if isinstance(url, (dict, list)):
            return normalize_meta_value(url, keys)
    return ""


def json_ld_meta(soup: BeautifulSoup) -> Dict[str, str]:
    result: Dict[str, str] = {}
    stack = list(iter_json_ld(soup))
    while stack:
        node = stack.pop(0)
        if isinstance(node, list):
            stack[0:0] = node
            continue
        if not isinstance(node, dict):
            continue
        headline = node.get("headline") or node.get("name")
        date = node.get("datePublished") or node.get("dateCreated") or node.get("dateModified")
        if headline and "title" not in result:
            result["title"] = str(headline).strip()
        if node.get("description") and "description" not in result:
            result["description"] = str(node["description"]).strip()
        if node.get("keywords") and "keywords" not in result:
            result["keywords"] = normalize_meta_value(node["keywords"], ("name", "text", "value"))
        if date and "date" not in result:
            result["date"] = str(date).strip()
        if node.get("author") and "author" not in result:
            result["author"] = normalize_meta_value(node["author"], ("name",))
        if node.get("image") and "image" not in result:
            result["image"] = normalize_meta_value(node["image"], ("url", "contentUrl"))
        entity = node.get("mainEntityOfPage")
        if isinstance(entity, dict) and "canonical_url" not in result:
            url = entity.get("@id") or entity.get("url")
            if url:
                result["canonical_url"] = str(url).strip()
        stack.extend(v for v in node.values() if isinstance(v, (dict, list)))
    return {k: v for k, v in result.items() if v}


def extract_meta(html: Optional[str]) -> PageMeta:
    """Metadata of an article page; an empty PageMeta when nothing is found."""
    if not html:
        return PageMeta()
    try:
        source = html[:MAX_META_HTML_CHARS]
        soup = BeautifulSoup(source, "html.parser")
        ld = json_ld_meta(soup)

        title = ld.get("title") or read_meta(soup, TITLE_SELECTORS)
        if not title and soup.title and soup.title.string:
            title = _clean(soup.title.string)

        tags = read_meta_all(soup, ('meta[property="article:tag"]',))
        for selector in TAG_LIST_SELECTORS:
            tags.extend(split_tags(read_meta(soup, (selector,))))
        unique_tags = list(dict.fromkeys(t for t in tags if t))

        html_node = soup.find("html")
        lang = (html_node.get("lang") or "").strip() if html_node else ""

        return PageMeta(
            title=title or "",
            description=ld.get("description") or read_meta(soup, DESCRIPTION_SELECTORS),
            keywords=ld.get("keywords") or read_meta(soup, KEYWORD_SELECTORS),
            date=ld.get("date") or read_meta(soup, PUBLISHED_SELECTORS + ('meta[property="og:updated_time"]',)),
            published_time=read_meta(soup, PUBLISHED_SELECTORS),
            modified_time=read_meta(soup, MODIFIED_SELECTORS),
            canonical_url=(
                ld.get("canonical_url")
                or read_link(soup, 'link[rel="canonical"]')
                or read_meta(soup, ('meta[property="og:url"]', 'meta[name="parsely-link"]'))
            ),
            image=ld.get("image") or read_meta(soup, IMAGE_SELECTORS),
            author=ld.get("author") or read_meta(soup, AUTHOR_SELECTORS),
            site_name=read_meta(soup, ('meta[property="og:site_name"]', 'meta[name="application-name"]')),
            section=read_meta(soup, SECTION_SELECTORS),
            type=read_meta(soup, ('meta[property="og:type"]',)),
            locale=read_meta(soup, ('meta[property="og:locale"]',)),
            tags=", ".join(unique_tags),
            lang=lang,
        )
    except Exception as e:
        logger.warning(f"meta extract failed: {e}")
        return PageMeta()


def apply_meta(event: Any, meta: Optional[PageMeta], method: str = "") -> None:
    """Fill-blank merge of page metadata into an event and its meta* columns."""
    if meta is None or meta.empty:
        return
    for key, value in meta.as_dict().items():
        if value and not event.content_meta.get(key):
            event.content_meta[key] = value
    if method and not event.content_meta.get("method"):
        event.content_meta["method"] = method

    def fill(name: str, value: str) -> None:
        if value and not (getattr(event, name) or "").strip():
            setattr(event, name, value)

    for meta_name, event_name in EVENT_FIELDS.items():
        fill(event_name, getattr(meta, meta_name))
    for meta_name, event_name in EVENT_META_FIELDS.items():
        fill(event_name, getattr(meta, meta_name))
    fill("meta_date", meta.published_time or meta.date)
    fill("meta_lang", meta.lang or meta.locale)
