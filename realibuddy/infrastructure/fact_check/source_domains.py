"""Domain lists used to restrict fact-check evidence to a family of sources."""

from typing import Dict, List, Optional

from ...domain.models.verification import SourceFilter

# Perplexity accepts at most 20 domains per search_domain_filter.
MAX_DOMAINS = 20

SOURCE_DOMAINS: Dict[SourceFilter, List[str]] = {
    SourceFilter.AUTHORITATIVE: [
        "wikipedia.org",
        "britannica.com",
        "nist.gov",
        "cdc.gov",
        "nasa.gov",
        "nih.gov",
        "fda.gov",
        "epa.gov",
        "stanford.edu",
        "mit.edu",
        "harvard.edu",
        "ox.ac.uk",
        "cambridge.org",
        "who.int",
        "un.org",
        "worldbank.org",
        "census.gov",
        "usgs.gov",
        "noaa.gov",
        "loc.gov",
    ],
    SourceFilter.NEWS: [
        "reuters.com",
        "apnews.com",
        "bbc.com",
        "nytimes.com",
        "washingtonpost.com",
        "wsj.com",
        "theguardian.com",
        "ft.com",
        "bloomberg.com",
        "economist.com",
        "npr.org",
        "pbs.org",
        "cnbc.com",
        "axios.com",
        "propublica.org",
        "factcheck.org",
        "snopes.com",
        "politifact.com",
        "fullfact.org",
    ],
    SourceFilter.SOCIAL: [
        "reddit.com",
        "twitter.com",
        "x.com",
        "facebook.com",
        "instagram.com",
        "tiktok.com",
        "linkedin.com",
        "youtube.com",
        "medium.com",
        "quora.com",
        "tumblr.com",
        "pinterest.com",
        "snapchat.com",
        "threads.net",
        "mastodon.social",
        "bluesky.app",
        "discord.com",
        "telegram.org",
        "whatsapp.com",
        "wechat.com",
    ],
    SourceFilter.ACADEMIC: [
        "arxiv.org",
        "scholar.google.com",
        "jstor.org",
        "pubmed.ncbi.nlm.nih.gov",
        "nature.com",
        "science.org",
        "sciencedirect.com",
        "springer.com",
        "wiley.com",
        "tandfonline.com",
        "plos.org",
        "cell.com",
        "ieee.org",
        "acm.org",
        "researchgate.net",
        "academia.edu",
        "semanticscholar.org",
        "biorxiv.org",
        "medrxiv.org",
        "ssrn.com",
    ],
}


def domains_for_filter(source_filter: Optional[SourceFilter]) -> Optional[List[str]]:
    """Get the domain list for a source filter.

    Returns None for ``all`` or no filter, meaning the search is unrestricted.
    """
    if source_filter is None or source_filter is SourceFilter.ALL:
        return None
    return SOURCE_DOMAINS[source_filter][:MAX_DOMAINS]
