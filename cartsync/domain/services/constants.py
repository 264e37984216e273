# Constants for the recommendation pipeline and reward evaluation.

# Strategy scores (higher = more relevant)
SCORE_MANUAL = 0.95             # manual product list and merchant complement overrides
SCORE_COMPLEMENT_AUTO = 0.85    # built-in complement patterns
SCORE_CATEGORY = 0.6            # same product type as a cart line
SCORE_PRICE_BAND = 0.4
SCORE_SEASONAL = 0.3
SCORE_POPULAR = 0.2

# Frequently-bought-together pairs below this confidence are ignored
MIN_PAIR_CONFIDENCE = 0.15

# Complement detection searches at most this many keywords per build
MAX_COMPLEMENT_KEYWORDS = 6

# Category matching searches the first few distinct product types in the cart
MAX_CATEGORY_TYPES = 2

# Per-strategy fetch size and the master list floor before popularity top-up
STRATEGY_FETCH_LIMIT = 6
MIN_MASTER_SIZE = 8

# Price-band targeting: (cart value floor in cents, min multiplier, max multiplier)
# applied to the average line price; first matching tier wins.
PRICE_BAND_TIERS = (
    (15000, 0.3, 0.8),
    (8000, 0.2, 0.6),
    (0, 0.1, 0.4),
)

# Threshold-aware re-ranking keeps prices within [LO * gap, HI * gap]
PRICE_GAP_LO = 0.5
PRICE_GAP_HI = 2.0

# Complement detection modes
COMPLEMENT_AUTOMATIC = "automatic"   # built-in patterns + merchant overrides
COMPLEMENT_MANUAL = "manual"         # merchant overrides only

# Threshold suggestion modes
SUGGEST_SMART = "smart"
SUGGEST_PRICE = "price"

# Built-in complement patterns: regex over "title product_type" (lowercased)
DEFAULT_COMPLEMENT_RULES = {
    r"\b(sneaker|shoe|boot|trainer)s?\b": ["socks", "shoe care", "insoles"],
    r"\b(dress|gown)\b": ["earrings", "clutch", "heels"],
    r"\b(shirt|blazer|suit)\b": ["tie", "cufflinks", "belt"],
    r"\b(jean|trouser|pant)s?\b": ["belt", "t-shirt"],
    r"\b(laptop|notebook|macbook)\b": ["laptop bag", "mouse", "usb hub"],
    r"\b(phone|iphone|smartphone)\b": ["phone case", "charger", "screen protector"],
    r"\b(camera|dslr)\b": ["memory card", "camera bag", "tripod"],
    r"\b(coffee|espresso)\b": ["mug", "coffee filter", "grinder"],
    r"\b(tea)\b": ["teapot", "mug", "honey"],
    r"\b(bike|bicycle|cycling)\b": ["helmet", "bike lights", "water bottle"],
    r"\b(yoga|fitness|gym)\b": ["yoga mat", "water bottle", "towel"],
    r"\b(skincare|serum|moisturi[sz]er|cleanser)\b": ["sunscreen", "toner", "face mask"],
    r"\b(candle)\b": ["matches", "candle holder"],
    r"\b(dog|puppy)\b": ["dog treats", "leash", "dog toy"],
    r"\b(cat|kitten)\b": ["cat treats", "cat toy"],
}

# Seasonal boost keywords by month (1 = January)
SEASONAL_KEYWORDS = {
    1: ["winter", "fitness"],
    2: ["valentine", "gift"],
    3: ["spring"],
    4: ["spring", "easter"],
    5: ["summer", "outdoor"],
    6: ["summer", "travel"],
    7: ["summer", "beach"],
    8: ["back to school"],
    9: ["autumn", "fall"],
    10: ["halloween", "autumn"],
    11: ["black friday", "gift"],
    12: ["christmas", "gift"],
}
