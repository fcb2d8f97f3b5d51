"""
assistant.tools.research

Topic research: Wikipedia intro extract, rewritten into a short summary by the completion gateway.
Science and technology topics also pull the most relevant arXiv abstract.
Results are cached per topic; a failed personalisation falls back to the raw material.
"""

import logging
import re
import xml.etree.ElementTree as ET
from urllib.parse import quote

import requests

from assistant.prompts import research_prompt
from util.fallback import FallbackChain, Strategy
from util.http import get_json, get_text


logger = logging.getLogger(__name__)

WIKIPEDIA_API = "https://en.wikipedia.org/w/api.php"
ARXIV_API = "http://export.arxiv.org/api/query"
ATOM = "{http://www.w3.org/2005/Atom}"
RESEARCH_TTL = 60 * 60
MAX_EXTRACT_CHARS = 1500
MAX_ABSTRACT_CHARS = 800

ARXIV_TOPICS = re.compile(
    r"\b(?:cosmic|cosmology|tech|technology|quantum|black holes?|ai|artificial intelligence|machine learning)\b",
    re.IGNORECASE,
)


def fetch_wikipedia_extract(topic):
    """Plain-text intro of the best-matching article, or None."""
    data = get_json(
        WIKIPEDIA_API,
        params={
            "action": "query",
            "prop": "extracts",
            "exintro": 1,
            "explaintext": 1,
            "redirects": 1,
            "format": "json",
            "titles": topic,
        },
        retries=1,
    )
    query = data.get("query") if isinstance(data, dict) else None
    pages = query.get("pages") if isinstance(query, dict) else None
    if not isinstance(pages, dict):
        return None
    for page_id, page in pages.items():
        extract = page.get("extract") if isinstance(page, dict) else None
        if page_id != "-1" and isinstance(extract, str) and extract.strip():
            return extract.strip()
    return None


def wants_arxiv(topic):
    return bool(ARXIV_TOPICS.search(topic or ""))


def fetch_arxiv_entry(topic):
    """Summary and link of the most relevant arXiv paper, or None."""
    feed = get_text(
        ARXIV_API,
        params={
            "search_query": f"all:{topic}",
            "start": 0,
            "max_results": 1,
            "sortBy": "relevance",
        },
        retries=1,
    )
    try:
        root = ET.fromstring(feed)
    except ET.ParseError as exc:
        logger.warning("arXiv feed for %r is not valid XML: %s", topic, exc)
        return None
    entry = root.find(f"{ATOM}entry")
    if entry is None:
        return None
    summary = " ".join((entry.findtext(f"{ATOM}summary") or "").split())
    link = (entry.findtext(f"{ATOM}id") or "").strip()
    if not summary:
        return None
    return {"summary": summary, "link": link}


class ResearchTool:
    def __init__(self, gateway, cache, ttl=RESEARCH_TTL):
        self.gateway = gateway
        self.cache = cache
        self.ttl = ttl
        self._summarize = FallbackChain(
            "research_summary",
            [Strategy("gateway", self._personalize), Strategy("extract", self._plain)],
        )

    def research(self, topic):
        topic = (topic or "").strip() or "AI"
        key = f"research_{topic.lower()}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        try:
            extract = fetch_wikipedia_extract(topic)
        except requests.RequestException as exc:
            logger.warning("Wikipedia lookup for %r failed: %s", topic, exc)
            return f"I couldn't reach my research sources for \"{topic}\" right now. Please try again in a bit."
        if not extract:
            return f"I couldn't find anything on \"{topic}\". Could you phrase the topic differently?"
        paper = self._arxiv(topic)
        summary = self._summarize.run(topic, extract[:MAX_EXTRACT_CHARS], paper)
        self.cache.set(key, summary, self.ttl)
        return summary

    def _arxiv(self, topic):
        if not wants_arxiv(topic):
            return None
        try:
            return fetch_arxiv_entry(topic)
        except requests.RequestException as exc:
            logger.info("arXiv lookup for %r failed, using Wikipedia only: %s", topic, exc)
            return None

    def _personalize(self, topic, extract, paper):
        if paper is None:
            return self.gateway.generate(research_prompt(topic, extract))
        material = f"{extract}\n\nRecent arXiv paper:\n{paper['summary'][:MAX_ABSTRACT_CHARS]}"
        return self.gateway.generate(research_prompt(topic, material, sources=("Wikipedia", "arXiv")))

    def _plain(self, topic, extract, paper):
        link = f"https://en.wikipedia.org/wiki/{quote(topic.replace(' ', '_'))}"
        text = f"{extract}\n\nSource: Wikipedia ({link})"
        if paper is not None:
            abstract = paper["summary"][:MAX_ABSTRACT_CHARS]
            text = f"{extract}\n\nPlus, from a recent paper: {abstract}\n\nSources: Wikipedia ({link}), arXiv ({paper['link']})"
        return text
