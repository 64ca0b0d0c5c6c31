"""
Built-in external signal sources.

Layer assignment:
    1  cultural noise      wikipedia_pageviews, reddit, gnews
    2  search intent       google_trends (placeholder, no public API)
    3  marketplace         ebay
    4  media amplification youtube

Missing credentials, non-OK responses and network errors (after retries)
degrade to a raw payload carrying {"mock": True, "note": ...}, which every
normalizer maps to all-zero features.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

import httpx
import numpy as np
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from intelcore.config import Settings
from intelcore.signals.ingestion import (
    SignalSource,
    SignalSourceRegistry,
    compute_signal_acceleration,
    compute_signal_velocity,
)
from intelcore.signals.schemas import NormalizedSignalFeatures
from intelcore.utils.datetime import to_naive_utc, utc_now
from intelcore.log_config import logger


WIKIPEDIA_PAGEVIEWS_URL = (
    "https://wikimedia.org/api/rest_v1/metrics/pageviews/per-article/"
    "en.wikipedia/all-access/all-agents/{article}/daily/{start}/{end}"
)
REDDIT_TOKEN_URL = "https://www.reddit.com/api/v1/access_token"
REDDIT_SEARCH_URL = "https://oauth.reddit.com/search"
GNEWS_SEARCH_URL = "https://gnews.io/api/v4/search"
YOUTUBE_SEARCH_URL = "https://www.googleapis.com/youtube/v3/search"
YOUTUBE_VIDEOS_URL = "https://www.googleapis.com/youtube/v3/videos"
EBAY_FINDING_URL = "https://svcs.ebay.com/services/search/FindingService/v1"

WIKIPEDIA_LOOKBACK_DAYS = 30

POSITIVE_TERMS = ["good", "great", "best", "top", "rise", "gain", "surge", "growth", "positive", "success"]
NEGATIVE_TERMS = ["bad", "worst", "fall", "drop", "decline", "crisis", "fail", "loss", "negative", "crash"]


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    retry=retry_if_exception_type(httpx.TransportError),
    reraise=True,
)
async def _request(client: httpx.AsyncClient, method: str, url: str, **kwargs) -> httpx.Response:
    """Issue a request, retrying transport-level failures."""
    return await client.request(method, url, **kwargs)


def _mock(collection: str, note: str) -> Dict[str, Any]:
    return {"mock": True, collection: [], "note": note}


def _usable(raw: Any, collection: str, minimum: int = 2) -> bool:
    return bool(raw) and not raw.get("mock") and len(raw.get(collection) or []) >= minimum


def _spread_stats(values: Sequence[float]) -> Tuple[float, float, float, float]:
    """(mean, std, z-score of latest, relative deviation of latest from mean)."""
    arr = np.asarray(values, dtype=float)
    mean = float(arr.mean())
    std = float(arr.std())
    latest = float(arr[-1])
    z_score = (latest - mean) / std if std > 0 else 0.0
    relative = (latest - mean) / mean if mean > 0 else 0.0
    return mean, std, z_score, relative


def _timed_pairs(items: Sequence[Dict[str, Any]], time_key: str, value_key: str) -> Tuple[List[float], List[datetime]]:
    """Values and parsed timestamps, dropping items whose timestamp does not parse."""
    values: List[float] = []
    timestamps: List[datetime] = []
    for item in items:
        try:
            ts = to_naive_utc(item.get(time_key))
        except ValueError:
            ts = None
        if ts is None:
            continue
        values.append(float(item.get(value_key) or 0))
        timestamps.append(ts)
    return values, timestamps


def _from_epoch(seconds: float) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)


# ============================================================================
# 1. Wikipedia Pageviews (Layer 1 - Cultural Noise)
# ============================================================================

def _wikipedia_series(raw: Any) -> Tuple[List[float], List[datetime]]:
    daily = raw["dailyViews"]
    views = [float(d.get("views") or 0) for d in daily]
    now = utc_now()
    timestamps = [now - timedelta(days=len(daily) - 1 - i) for i in range(len(daily))]
    return views, timestamps


def wikipedia_pageviews_source(settings: Settings) -> SignalSource:
    async def fetch(keyword: str, client: httpx.AsyncClient) -> Dict[str, Any]:
        end = utc_now()
        start = end - timedelta(days=WIKIPEDIA_LOOKBACK_DAYS)
        url = WIKIPEDIA_PAGEVIEWS_URL.format(
            article=quote(keyword, safe=""),
            start=start.strftime("%Y%m%d"),
            end=end.strftime("%Y%m%d"),
        )
        try:
            response = await _request(client, "GET", url, headers={"User-Agent": settings.signal_user_agent})
        except httpx.HTTPError as e:
            logger.error(f"Wikipedia pageviews fetch error: {e}")
            return _mock("dailyViews", "Wikipedia fetch error")

        if response.status_code != 200:
            logger.warning(f"Wikipedia API returned {response.status_code} for keyword: {keyword}")
            return _mock("dailyViews", f"Wikipedia API error: {response.status_code}")

        items = response.json().get("items") or []
        return {
            "mock": False,
            "dailyViews": [{"date": item.get("timestamp"), "views": item.get("views") or 0} for item in items],
        }

    def normalize(raw: Any) -> NormalizedSignalFeatures:
        if not _usable(raw, "dailyViews"):
            return NormalizedSignalFeatures()
        views, timestamps = _wikipedia_series(raw)
        velocity = compute_signal_velocity(views, timestamps)
        mean, _, z_score, relative = _spread_stats(views)
        return NormalizedSignalFeatures(
            velocity=velocity,
            acceleration=compute_signal_acceleration(views, timestamps),
            relative_deviation=relative,
            anomaly_z_score=z_score,
            attention_density_score=min(1.0, abs(velocity) / (mean or 1)),
        )

    def extract_features(raw: Any) -> Dict[str, float]:
        if not _usable(raw, "dailyViews"):
            return {"pageviewVelocity": 0.0, "acceleration": 0.0, "7dayChange": 0.0, "30dayChange": 0.0}
        views, timestamps = _wikipedia_series(raw)

        last7 = views[-7:]
        prev7 = views[-14:-7]
        avg7 = sum(last7) / (len(last7) or 1)
        avg_prev7 = sum(prev7) / len(prev7) if prev7 else avg7
        seven_day_change = (avg7 - avg_prev7) / avg_prev7 if avg_prev7 > 0 else 0.0

        overall = sum(views) / len(views)
        thirty_day_change = (views[-1] - overall) / overall if overall > 0 else 0.0

        return {
            "pageviewVelocity": compute_signal_velocity(views, timestamps),
            "acceleration": compute_signal_acceleration(views, timestamps),
            "7dayChange": seven_day_change,
            "30dayChange": thirty_day_change,
        }

    return SignalSource(
        name="wikipedia_pageviews",
        layer=1,
        fetch=fetch,
        normalize=normalize,
        extract_features=extract_features,
        update_frequency="daily",
    )


# ============================================================================
# 2. Google Trends (Layer 2 - Search Intent)
# ============================================================================

def google_trends_source(settings: Settings) -> SignalSource:
    async def fetch(keyword: str, client: httpx.AsyncClient) -> Optional[Dict[str, Any]]:
        logger.info("Google Trends requires unofficial API setup; no data fetched")
        return None

    def normalize(raw: Any) -> NormalizedSignalFeatures:
        return NormalizedSignalFeatures()

    def extract_features(raw: Any) -> Dict[str, float]:
        return {"trendScore": 0.0, "interestOverTime": 0.0, "relatedQueriesCount": 0.0}

    return SignalSource(
        name="google_trends",
        layer=2,
        fetch=fetch,
        normalize=normalize,
        extract_features=extract_features,
        update_frequency="daily",
    )


# ============================================================================
# 3. Reddit (Layer 1 - Cultural Noise)
# ============================================================================

def _reddit_series(raw: Any) -> Tuple[List[float], List[float], List[datetime]]:
    posts = raw["posts"]
    scores = [float(p.get("score") or 0) for p in posts]
    comments = [float(p.get("numComments") or 0) for p in posts]
    timestamps = [_from_epoch(float(p.get("createdUtc") or 0)) for p in posts]
    return scores, comments, timestamps


def reddit_source(settings: Settings) -> SignalSource:
    async def fetch(keyword: str, client: httpx.AsyncClient) -> Dict[str, Any]:
        if not settings.reddit_client_id or not settings.reddit_client_secret:
            logger.warning("Reddit API keys not configured (REDDIT_CLIENT_ID, REDDIT_CLIENT_SECRET). Returning mock data.")
            return _mock("posts", "Reddit API keys not configured")

        try:
            auth_response = await _request(
                client,
                "POST",
                REDDIT_TOKEN_URL,
                auth=(settings.reddit_client_id, settings.reddit_client_secret),
                data={"grant_type": "client_credentials"},
                headers={"User-Agent": settings.signal_user_agent},
            )
            if auth_response.status_code != 200:
                logger.warning(f"Reddit auth failed with status {auth_response.status_code}")
                return _mock("posts", "Reddit auth failed")

            access_token = auth_response.json().get("access_token")
            search_response = await _request(
                client,
                "GET",
                REDDIT_SEARCH_URL,
                params={"q": keyword, "sort": "new", "limit": 25},
                headers={"Authorization": f"Bearer {access_token}", "User-Agent": settings.signal_user_agent},
            )
        except httpx.HTTPError as e:
            logger.error(f"Reddit fetch error: {e}")
            return _mock("posts", "Reddit fetch error")

        if search_response.status_code != 200:
            logger.warning(f"Reddit search failed with status {search_response.status_code}")
            return _mock("posts", "Reddit search failed")

        children = (search_response.json().get("data") or {}).get("children") or []
        posts = []
        for child in children:
            data = child.get("data") or {}
            posts.append({
                "title": data.get("title"),
                "score": data.get("score") or 0,
                "numComments": data.get("num_comments") or 0,
                "createdUtc": data.get("created_utc") or 0,
                "subreddit": data.get("subreddit"),
                "upvoteRatio": data.get("upvote_ratio") or 0,
            })
        return {"mock": False, "posts": posts}

    def normalize(raw: Any) -> NormalizedSignalFeatures:
        if not _usable(raw, "posts"):
            return NormalizedSignalFeatures()
        scores, comments, timestamps = _reddit_series(raw)
        _, _, z_score, relative = _spread_stats(scores)
        return NormalizedSignalFeatures(
            velocity=compute_signal_velocity(scores, timestamps),
            acceleration=compute_signal_acceleration(scores, timestamps),
            relative_deviation=relative,
            anomaly_z_score=z_score,
            attention_density_score=min(1.0, len(scores) * sum(comments) / 1000),
        )

    def extract_features(raw: Any) -> Dict[str, float]:
        if not _usable(raw, "posts"):
            return {"postVolumeVelocity": 0.0, "upvoteVelocity": 0.0, "commentVelocity": 0.0}
        scores, comments, timestamps = _reddit_series(raw)
        volumes = [float(i + 1) for i in range(len(scores))]
        return {
            "postVolumeVelocity": compute_signal_velocity(volumes, timestamps),
            "upvoteVelocity": compute_signal_velocity(scores, timestamps),
            "commentVelocity": compute_signal_velocity(comments, timestamps),
        }

    return SignalSource(
        name="reddit",
        layer=1,
        fetch=fetch,
        normalize=normalize,
        extract_features=extract_features,
        update_frequency="hourly",
    )


# ============================================================================
# 4. GNews (Layer 1 - Cultural Noise)
# ============================================================================

def gnews_source(settings: Settings) -> SignalSource:
    async def fetch(keyword: str, client: httpx.AsyncClient) -> Dict[str, Any]:
        if not settings.gnews_api_key:
            logger.warning("GNews API key not configured (GNEWS_API_KEY). Returning mock data.")
            return _mock("articles", "GNews API key not configured")

        try:
            response = await _request(
                client,
                "GET",
                GNEWS_SEARCH_URL,
                params={"q": keyword, "token": settings.gnews_api_key, "lang": "en", "max": 10},
            )
        except httpx.HTTPError as e:
            logger.error(f"GNews fetch error: {e}")
            return _mock("articles", "GNews fetch error")

        if response.status_code != 200:
            logger.warning(f"GNews API returned {response.status_code}")
            return _mock("articles", f"GNews API error: {response.status_code}")

        articles = [
            {
                "title": a.get("title"),
                "description": a.get("description"),
                "publishedAt": a.get("publishedAt"),
                "source": (a.get("source") or {}).get("name"),
                "url": a.get("url"),
            }
            for a in response.json().get("articles") or []
        ]
        return {"mock": False, "articles": articles}

    def normalize(raw: Any) -> NormalizedSignalFeatures:
        if not _usable(raw, "articles"):
            return NormalizedSignalFeatures()
        articles = raw["articles"]
        _, timestamps = _timed_pairs(articles, "publishedAt", "title")
        if len(timestamps) < 2:
            return NormalizedSignalFeatures()

        volumes = [float(i + 1) for i in range(len(timestamps))]
        return NormalizedSignalFeatures(
            velocity=compute_signal_velocity(volumes, timestamps),
            acceleration=compute_signal_acceleration(volumes, timestamps),
            attention_density_score=min(1.0, len(articles) / 10),
        )

    def extract_features(raw: Any) -> Dict[str, float]:
        if not raw or raw.get("mock") or raw.get("articles") is None:
            return {"articleFrequency": 0.0, "sentimentPolarity": 0.0}

        articles = raw["articles"]
        positive = negative = 0
        for article in articles:
            text = f"{article.get('title') or ''} {article.get('description') or ''}".lower()
            positive += sum(1 for term in POSITIVE_TERMS if term in text)
            negative += sum(1 for term in NEGATIVE_TERMS if term in text)

        total = positive + negative
        return {
            "articleFrequency": float(len(articles)),
            "sentimentPolarity": (positive - negative) / total if total > 0 else 0.0,
        }

    return SignalSource(
        name="gnews",
        layer=1,
        fetch=fetch,
        normalize=normalize,
        extract_features=extract_features,
        update_frequency="daily",
    )


# ============================================================================
# 5. YouTube (Layer 4 - Media Amplification)
# ============================================================================

def youtube_source(settings: Settings) -> SignalSource:
    async def fetch(keyword: str, client: httpx.AsyncClient) -> Dict[str, Any]:
        if not settings.youtube_api_key:
            logger.warning("YouTube API key not configured (YOUTUBE_API_KEY). Returning mock data.")
            return _mock("videos", "YouTube API key not configured")

        try:
            search = await _request(
                client,
                "GET",
                YOUTUBE_SEARCH_URL,
                params={
                    "part": "snippet",
                    "q": keyword,
                    "type": "video",
                    "order": "date",
                    "maxResults": 10,
                    "key": settings.youtube_api_key,
                },
            )
            if search.status_code != 200:
                logger.warning(f"YouTube API returned {search.status_code}")
                return _mock("videos", f"YouTube API error: {search.status_code}")

            items = search.json().get("items") or []
            video_ids = [(item.get("id") or {}).get("videoId") for item in items]
            video_ids = [v for v in video_ids if v]
            if not video_ids:
                return {"mock": False, "videos": []}

            stats = await _request(
                client,
                "GET",
                YOUTUBE_VIDEOS_URL,
                params={"part": "statistics,snippet", "id": ",".join(video_ids), "key": settings.youtube_api_key},
            )
        except httpx.HTTPError as e:
            logger.error(f"YouTube fetch error: {e}")
            return _mock("videos", "YouTube fetch error")

        if stats.status_code != 200:
            # Search results without statistics
            return {
                "mock": False,
                "videos": [
                    {
                        "videoId": (item.get("id") or {}).get("videoId"),
                        "title": (item.get("snippet") or {}).get("title"),
                        "publishedAt": (item.get("snippet") or {}).get("publishedAt"),
                        "viewCount": 0,
                        "likeCount": 0,
                        "commentCount": 0,
                    }
                    for item in items
                ],
            }

        videos = []
        for item in stats.json().get("items") or []:
            snippet = item.get("snippet") or {}
            statistics = item.get("statistics") or {}
            videos.append({
                "videoId": item.get("id"),
                "title": snippet.get("title"),
                "publishedAt": snippet.get("publishedAt"),
                "channelTitle": snippet.get("channelTitle"),
                "viewCount": int(statistics.get("viewCount") or 0),
                "likeCount": int(statistics.get("likeCount") or 0),
                "commentCount": int(statistics.get("commentCount") or 0),
            })
        return {"mock": False, "videos": videos}

    def normalize(raw: Any) -> NormalizedSignalFeatures:
        if not _usable(raw, "videos"):
            return NormalizedSignalFeatures()
        videos = raw["videos"]
        views, timestamps = _timed_pairs(videos, "publishedAt", "viewCount")
        if len(timestamps) < 2:
            return NormalizedSignalFeatures()

        _, _, z_score, relative = _spread_stats(views)
        engagement = sum((v.get("likeCount") or 0) + (v.get("commentCount") or 0) for v in videos)
        return NormalizedSignalFeatures(
            velocity=compute_signal_velocity(views, timestamps),
            acceleration=compute_signal_acceleration(views, timestamps),
            relative_deviation=relative,
            anomaly_z_score=z_score,
            attention_density_score=min(1.0, engagement / 10000),
        )

    def extract_features(raw: Any) -> Dict[str, float]:
        empty = {"viewVelocity": 0.0, "engagementVelocity": 0.0, "topicClustering": 0.0}
        if not _usable(raw, "videos"):
            return empty
        videos = raw["videos"]
        views, timestamps = _timed_pairs(videos, "publishedAt", "viewCount")
        if len(timestamps) < 2:
            return empty

        engagements, _ = _timed_pairs(
            [
                {"publishedAt": v.get("publishedAt"), "engagement": (v.get("likeCount") or 0) + (v.get("commentCount") or 0)}
                for v in videos
            ],
            "publishedAt",
            "engagement",
        )
        channels = {v.get("channelTitle") for v in videos if v.get("channelTitle")}
        return {
            "viewVelocity": compute_signal_velocity(views, timestamps),
            "engagementVelocity": compute_signal_velocity(engagements, timestamps),
            "topicClustering": len(videos) / len(channels) if channels else 0.0,
        }

    return SignalSource(
        name="youtube",
        layer=4,
        fetch=fetch,
        normalize=normalize,
        extract_features=extract_features,
        update_frequency="daily",
    )


# ============================================================================
# 6. eBay (Layer 3 - Marketplace / Consideration)
# ============================================================================

def _first(value: Any) -> Any:
    """The Finding API wraps every scalar in a one-element list."""
    if isinstance(value, list):
        return value[0] if value else None
    return value


def ebay_source(settings: Settings) -> SignalSource:
    async def fetch(keyword: str, client: httpx.AsyncClient) -> Dict[str, Any]:
        if not settings.ebay_api_key:
            logger.warning("eBay API key not configured (EBAY_API_KEY). Returning mock data.")
            return _mock("listings", "eBay API key not configured")

        try:
            response = await _request(
                client,
                "GET",
                EBAY_FINDING_URL,
                params={
                    "OPERATION-NAME": "findItemsByKeywords",
                    "SERVICE-VERSION": "1.0.0",
                    "SECURITY-APPNAME": settings.ebay_api_key,
                    "RESPONSE-DATA-FORMAT": "JSON",
                    "REST-PAYLOAD": "",
                    "keywords": keyword,
                    "paginationInput.entriesPerPage": 10,
                    "sortOrder": "StartTimeNewest",
                },
            )
        except httpx.HTTPError as e:
            logger.error(f"eBay fetch error: {e}")
            return _mock("listings", "eBay fetch error")

        if response.status_code != 200:
            logger.warning(f"eBay API returned {response.status_code}")
            return _mock("listings", f"eBay API error: {response.status_code}")

        search_result = _first((_first(response.json().get("findItemsByKeywordsResponse")) or {}).get("searchResult")) or {}
        listings = []
        for item in search_result.get("item") or []:
            selling = _first(item.get("sellingStatus")) or {}
            listing_info = _first(item.get("listingInfo")) or {}
            price = _first(selling.get("currentPrice")) or {}
            listings.append({
                "title": _first(item.get("title")),
                "price": float(price.get("__value__") or 0),
                "bidCount": int(_first(selling.get("bidCount")) or 0),
                "listingType": _first(listing_info.get("listingType")),
                "startTime": _first(listing_info.get("startTime")),
                "endTime": _first(listing_info.get("endTime")),
            })
        return {"mock": False, "listings": listings}

    def normalize(raw: Any) -> NormalizedSignalFeatures:
        if not _usable(raw, "listings"):
            return NormalizedSignalFeatures()
        listings = raw["listings"]
        prices, timestamps = _timed_pairs(listings, "startTime", "price")
        if len(timestamps) < 2:
            return NormalizedSignalFeatures()

        all_prices = [float(l.get("price") or 0) for l in listings]
        mean_price = float(np.mean(all_prices))
        relative = (all_prices[-1] - mean_price) / mean_price if mean_price > 0 else 0.0
        total_bids = sum(int(l.get("bidCount") or 0) for l in listings)
        return NormalizedSignalFeatures(
            velocity=compute_signal_velocity(prices, timestamps),
            acceleration=compute_signal_acceleration(prices, timestamps),
            relative_deviation=relative,
            attention_density_score=min(1.0, total_bids / 100),
        )

    def extract_features(raw: Any) -> Dict[str, float]:
        if not _usable(raw, "listings"):
            return {"listingFrequency": 0.0, "bidDensity": 0.0, "priceMovement": 0.0}
        listings = raw["listings"]
        total_bids = sum(int(l.get("bidCount") or 0) for l in listings)
        prices = [float(l.get("price") or 0) for l in listings if (l.get("price") or 0) > 0]
        price_movement = (prices[-1] - prices[0]) / prices[0] if len(prices) >= 2 else 0.0
        return {
            "listingFrequency": float(len(listings)),
            "bidDensity": total_bids / len(listings),
            "priceMovement": price_movement,
        }

    return SignalSource(
        name="ebay",
        layer=3,
        fetch=fetch,
        normalize=normalize,
        extract_features=extract_features,
        update_frequency="daily",
    )


BUILTIN_SOURCE_BUILDERS = (
    wikipedia_pageviews_source,
    google_trends_source,
    reddit_source,
    gnews_source,
    youtube_source,
    ebay_source,
)


def register_all_signal_sources(registry: SignalSourceRegistry, settings: Settings) -> None:
    """Register the six built-in sources."""
    for build in BUILTIN_SOURCE_BUILDERS:
        registry.register(build(settings))
    logger.info("All signal sources registered successfully.")
