"""
Word Lists and Content Filtering Data for News Card Autopilot

This module contains the sensitive-term replacement table, the image
heuristics and the listing URL patterns used by ingestion. Kept apart
from settings.py to separate data from configuration logic.
"""

# Sensitive terms and their masked rendering. The masked token's casing is
# taken from this table, not from the input text.
SENSITIVE_REPLACEMENTS = {
    "kill": "Ki*ll",
    "kills": "Ki*lls",
    "killed": "Kil*led",
    "murder": "Mu*rder",
    "murders": "Mu*rders",
    "murdered": "Mur*dered",
    "assassinate": "As*sa*ssinate",
    "assassinates": "As*sa*ssinates",
    "assassinated": "As*sa*ssinated",
    "stab": "St*ab",
    "stabs": "St*abs",
    "stabbed": "St*abbed",
    "slaughter": "Sl*aughter",
    "slaughters": "Sl*aughters",
    "slaughtered": "Sl*aughtered",
    "rape": "Ra*pe",
    "rapes": "Ra*pes",
    "raped": "Ra*ped",
    "gaza": "Ga*za",
    "israel": "Isr*ael",
    "palestine": "Pa*le*stine",
}

# Image URLs containing any of these are site chrome, not article photos
BANNED_IMAGE_KEYWORDS = [
    "logo",
    "favicon",
    "sprite",
    "placeholder",
    "default",
    "avatar",
]

# Listing, category, search and static pages that share the article URL shape
LISTING_EXCLUDE_PATTERNS = [
    r"/search",
    r"/archives",
    r"/all_tags",
    r"/all_writers",
    r"/privacy-policy",
    r"/terms-conditions",
    r"/converter",
    r"/about-us",
    r"/namaz",
    r"/contact",
    r"/category/",
    r"/tags?/",
    r"/page/\d+",
    r"[?&]page=\d+",
    r"-\d{8}/?$",           # Date archive pages such as /latest-20260105
]

# Selectors tried in order for the article byline
AUTHOR_SELECTORS = [
    ".author",
    ".byline",
    "[rel='author']",
    ".article-author",
]

# Selectors tried in order for the publish date
DATE_SELECTORS = [
    "time[datetime]",
    ".date",
    ".publish-date",
    ".published",
]

# Containers searched for the largest text block when paragraphs are too thin
CONTENT_BLOCK_SELECTORS = [
    "article",
    ".article-content",
    ".news-content",
    ".details",
    "#article-body",
    "main",
]

# Paragraphs containing these are ads, not body copy
PARAGRAPH_NOISE_PHRASES = [
    "advertisement",
]
