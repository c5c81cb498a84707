"""Built-in keyword table used when no user rule or learned mapping applies."""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum


class AmountHint(Enum):
    """Sign a transaction amount must have for a default pattern to apply."""

    NEGATIVE = "negative"
    POSITIVE = "positive"
    ANY = "any"

    def allows(self, amount: Decimal) -> bool:
        """Check whether the amount's sign satisfies this hint."""
        if self is AmountHint.POSITIVE:
            return amount >= 0
        if self is AmountHint.NEGATIVE:
            return amount < 0
        return True


@dataclass(frozen=True)
class DefaultPattern:
    """Keywords that map a transaction to a system category by name."""

    category: str
    keywords: tuple[str, ...]
    amount_hint: AmountHint = AmountHint.ANY


POSITIVE_AMOUNT_FALLBACK = "Income"
POSITIVE_AMOUNT_FALLBACK_CONFIDENCE = 0.5

_NEG = AmountHint.NEGATIVE
_POS = AmountHint.POSITIVE

DEFAULT_PATTERNS: tuple[DefaultPattern, ...] = (
    # Expenses
    DefaultPattern("Groceries & Food Staples", (
        "walmart", "kroger", "safeway", "wholefds", "whole foods", "trader joe",
        "aldi", "costco", "publix", "heb", "wegmans", "sprouts", "sams club",
    ), _NEG),
    DefaultPattern("Entertainment & Going Out", (
        "mcdonald", "starbucks", "chipotle", "domino", "pizza", "burger", "subway",
        "dunkin", "panera", "chick-fil", "taco bell", "wendy", "grubhub", "doordash",
        "uber eat", "postmates", "opentable", "resy", "tock", "ticketmaster",
        "stubhub", "fandango", "amc", "alamo drafthouse",
    ), _NEG),
    DefaultPattern("Transport", (
        "uber", "lyft", "parking", "toll", "transit", "metro", "taxi", "shell",
        "exxon", "chevron", "bp ", "speedway", "wawa", "circle k", "marathon",
        "valero", "sunoco", "gas", "geico", "progressive", "txtag", "ezpass",
        "sunpass",
    ), _NEG),
    DefaultPattern("Subscriptions", (
        "netflix", "hulu", "disney", "spotify", "apple music", "youtube", "hbo",
        "paramount", "peacock", "apple one", "icloud", "subscription",
        "membership", "amazon prime",
    ), _NEG),
    DefaultPattern("Shopping & Indulgence", (
        "amazon", "target", "bestbuy", "best buy", "ebay", "macys", "nordstrom",
        "zara", "h&m", "nike", "adidas", "wayfair", "crate and barrel", "west elm",
        "uniqlo", "asos",
    ), _NEG),
    DefaultPattern("Housing", (
        "rent", "mortgage", "lease", "property mgmt", "hoa", "electric", "power",
        "water", "gas co", "utility", "comcast", "xfinity", "att", "verizon",
        "t-mobile", "spectrum", "internet",
    ), _NEG),
    DefaultPattern("Healthcare & Insurance", (
        "pharmacy", "cvs", "walgreens", "rite aid", "doctor", "medical",
        "hospital", "dental", "clinic", "labcorp", "cigna", "aetna", "bcbs",
        "united health", "optum", "insurance", "state farm", "allstate", "usaa",
    ), _NEG),
    DefaultPattern("Fitness & Wellness", (
        "gym", "fitness", "planet fitness", "orange theory", "equinox",
        "la fitness", "peloton", "classpass", "lululemon",
    ), _NEG),
    DefaultPattern("Personal Care & Beauty", (
        "salon", "barber", "spa", "beauty", "nail", "haircut", "sephora", "ulta",
        "drybar",
    ), _NEG),
    DefaultPattern("Education & Tools", (
        "tuition", "university", "college", "school", "udemy", "coursera",
        "skillshare", "masterclass", "linkedin learning", "audible", "kindle",
    ), _NEG),
    DefaultPattern("Travel & Experiences", (
        "airline", "hotel", "airbnb", "vrbo", "expedia", "booking.com",
        "southwest", "delta", "united", "american air", "marriott", "hilton",
        "hyatt", "hertz", "enterprise", "turo", "kayak",
    ), _NEG),
    DefaultPattern("Business Operations", (
        "notion", "slack", "zoom", "google workspace", "gsuite", "dropbox", "aws",
        "digitalocean", "shopify", "stripe", "quickbooks", "freshbooks",
    ), _NEG),
    DefaultPattern("Creative Work", (
        "adobe", "figma", "sketch", "splice", "plugin boutique", "reverb",
        "sweetwater", "b&h", "adorama", "squarespace", "webflow",
    ), _NEG),
    DefaultPattern("Hobbies", (
        "michaels", "joann", "blick art", "guitar center", "musicians friend",
        "discogs", "steam", "gamestop",
    ), _NEG),
    DefaultPattern("Gifts & Celebrations", (
        "etsy", "1-800-flowers", "teleflora", "edible arrangements", "zola",
        "hallmark", "eventbrite",
    ), _NEG),
    DefaultPattern("Donations & Giving", (
        "gofundme", "givebutter", "network for good", "every.org", "church",
        "tithe", "charity",
    ), _NEG),
    DefaultPattern("Debt & Loans", (
        "sallie mae", "navient", "nelnet", "sofi", "epayment", "autopay",
        "payment thank you", "synchrony",
    ), _NEG),
    DefaultPattern("Financial Health", (
        "vanguard", "fidelity", "schwab", "robinhood", "coinbase", "etrade",
        "td ameri", "wealthfront", "betterment", "acorns",
    ), _NEG),
    DefaultPattern("Legal & Admin", (
        "legalzoom", "rocket lawyer", "notary", "irs", "dmv", "turbotax",
        "h&r block", "taxact",
    ), _NEG),
    DefaultPattern("Family Support", ("care.com", "brightwheel"), _NEG),
    DefaultPattern("Recreation", (
        "national park", "state park", "alltrails", "golftec", "top golf",
    ), _NEG),
    # Income
    DefaultPattern("Paycheck", (
        "payroll", "direct dep", "salary", "wage", "ach credit", "paycheck",
    ), _POS),
    DefaultPattern("Income", ("income", "revenue", "dividend", "royalty"), _POS),
    DefaultPattern("Interest", ("interest", "apy", "yield", "savings interest"), _POS),
    DefaultPattern("Reimbursement", (
        "reimbursement", "reimburse", "refund", "cashback", "rebate",
    ), _POS),
    # Either direction
    DefaultPattern("Transfer", (
        "transfer", "xfer", "wire", "zelle", "venmo", "cash app",
    ), AmountHint.ANY),
    DefaultPattern("Credit Card Payment", ("card payment", "credit card"), _NEG),
    DefaultPattern("Savings Transfer", (
        "savings", "save", "deposit to savings", "round up",
    ), AmountHint.ANY),
)
