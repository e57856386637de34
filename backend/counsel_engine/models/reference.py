"""
Counsel Engine - Reference Data

Region codes used for location matching and the legal categories a
request can be filed under.
"""

REGIONS = [
    {"code": "CES", "name": "Central Equatoria", "capital": "Juba"},
    {"code": "EES", "name": "Eastern Equatoria", "capital": "Torit"},
    {"code": "WES", "name": "Western Equatoria", "capital": "Yambio"},
    {"code": "JGL", "name": "Jonglei", "capital": "Bor"},
    {"code": "UNT", "name": "Unity", "capital": "Bentiu"},
    {"code": "UNL", "name": "Upper Nile", "capital": "Malakal"},
    {"code": "NBG", "name": "Northern Bahr el Ghazal", "capital": "Aweil"},
    {"code": "WBG", "name": "Western Bahr el Ghazal", "capital": "Wau"},
    {"code": "LKS", "name": "Lakes", "capital": "Rumbek"},
    {"code": "WRP", "name": "Warrap", "capital": "Kuajok"},
]

LEGAL_CATEGORIES = [
    {"id": "land", "name": "Land & Property Disputes"},
    {"id": "family", "name": "Family & Marriage"},
    {"id": "criminal", "name": "Criminal Defense"},
    {"id": "civil", "name": "Civil Rights"},
    {"id": "business", "name": "Business & Contracts"},
    {"id": "employment", "name": "Employment Issues"},
    {"id": "inheritance", "name": "Inheritance & Wills"},
    {"id": "immigration", "name": "Immigration & Citizenship"},
    {"id": "customary", "name": "Customary Law"},
    {"id": "other", "name": "Other Legal Matter"},
]

REGION_CODES = frozenset(r["code"] for r in REGIONS)
CATEGORY_IDS = frozenset(c["id"] for c in LEGAL_CATEGORIES)


def region_name(code: str) -> str:
    for region in REGIONS:
        if region["code"] == code:
            return region["name"]
    return code


def is_valid_region(code) -> bool:
    return code in REGION_CODES


def is_valid_category(category) -> bool:
    return category in CATEGORY_IDS
