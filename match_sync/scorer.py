"""
Buyer/Property Match Scoring

Field-based scoring with preferred-ZIP priority. No geocoding: location is
judged purely on whether the property sits in one of the buyer's ZIPs.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

from .models import Buyer, Property

ZIP_PATTERN = re.compile(r'\b\d{5}\b')


@dataclass
class MatchScore:
    score: int
    location_score: int
    beds_score: int
    baths_score: int
    budget_score: int
    reasoning: str = ''
    highlights: List[str] = field(default_factory=list)
    concerns: List[str] = field(default_factory=list)
    is_priority: bool = False  # In a preferred ZIP

    def breakdown(self) -> str:
        lines = [
            f"Total Score: {self.score}/100{' (PRIORITY)' if self.is_priority else ''}",
            f"  - ZIP Code: {self.location_score}/40",
            f"  - Beds: {self.beds_score}/25",
            f"  - Baths: {self.baths_score}/15",
            f"  - Budget: {self.budget_score}/20",
            f"Highlights: {', '.join(self.highlights)}",
        ]
        if self.concerns:
            lines.append(f"Concerns: {', '.join(self.concerns)}")
        return '\n'.join(lines)


def extract_zip(address: str) -> Optional[str]:
    """First 5-digit ZIP in an address string."""
    if not address:
        return None
    found = ZIP_PATTERN.search(address)
    return found.group(0) if found else None


def normalize_zip(zip_code: str) -> str:
    return re.sub(r'[\s-]', '', zip_code or '')[:5]


def in_preferred_zip(prop: Property, preferred: List[str]) -> bool:
    """Property ZIP field first, falling back to the ZIP in its address."""
    if not preferred:
        return False
    wanted = {normalize_zip(z) for z in preferred}
    zip_code = normalize_zip(prop.zip_code) if prop.zip_code else extract_zip(prop.address)
    return bool(zip_code) and zip_code in wanted


def _fmt(value: float) -> str:
    return f"{value:g}"


def quality_label(score: float) -> str:
    if score >= 80:
        return 'Excellent Match'
    if score >= 60:
        return 'Good Match'
    if score >= 40:
        return 'Fair Match'
    return 'Limited Match'


def generate_match_score(buyer: Buyer, prop: Property) -> MatchScore:
    """
    Score a buyer against a property.

    Categories:
        Location (0-40): 40 in a preferred ZIP, 10 outside them,
            20 when the buyer has no ZIP preference
        Beds (0-25): exact 25, off by one 15, more 10, fewer 5, unknown 12
        Baths (0-15): meets 15, fewer 5, unknown 8
        Budget (0-20): down payment as % of price; >=20% 20, >=10% 15,
            >=5% 10, lower 5, unknown 10

    Returns:
        MatchScore with the total (capped at 100) and a readable reasoning
    """
    highlights: List[str] = []
    concerns: List[str] = []
    breakdown: List[str] = []

    # ZIP priority
    has_zips = bool(buyer.preferred_zip_codes)
    is_priority = has_zips and in_preferred_zip(prop, buyer.preferred_zip_codes)
    if is_priority:
        location_score = 40
        highlights.append('In preferred ZIP code')
        breakdown.append(f"Location: {location_score}/40 pts (in preferred ZIP)")
    elif has_zips:
        location_score = 10
        concerns.append('Not in preferred ZIP codes')
        breakdown.append(f"Location: {location_score}/40 pts (outside preferred ZIPs)")
    else:
        location_score = 20
        breakdown.append(f"Location: {location_score}/40 pts (no ZIP preference set)")

    # Beds
    desired_beds, beds = buyer.desired_beds, prop.beds
    if desired_beds and beds:
        diff = beds - desired_beds
        if diff == 0:
            beds_score = 25
            highlights.append(f"Exact bed count: {_fmt(beds)} beds")
            breakdown.append(f"Beds: {beds_score}/25 pts (exact match: {_fmt(beds)} beds)")
        else:
            if abs(diff) == 1:
                beds_score = 15
                highlights.append(f"Close bed count: {_fmt(beds)} beds")
            elif diff > 0:
                beds_score = 10
                highlights.append(f"{_fmt(beds)} beds (more than desired)")
            else:
                beds_score = 5
                concerns.append(f"Fewer bedrooms: {_fmt(beds)} vs {_fmt(desired_beds)} desired")
            sign = '+' if diff > 0 else ''
            breakdown.append(
                f"Beds: {beds_score}/25 pts ({_fmt(beds)} beds, {sign}{_fmt(diff)} vs desired)"
            )
    else:
        beds_score = 12
        if beds:
            highlights.append(f"{_fmt(beds)} beds")
        breakdown.append(f"Beds: {beds_score}/25 pts")

    # Baths
    desired_baths, baths = buyer.desired_baths, prop.baths
    if desired_baths and baths:
        if baths >= desired_baths:
            baths_score = 15
            highlights.append(f"{_fmt(baths)} baths")
            breakdown.append(f"Baths: {baths_score}/15 pts (meets requirement: {_fmt(baths)} baths)")
        else:
            baths_score = 5
            concerns.append(f"Fewer bathrooms: {_fmt(baths)} vs {_fmt(desired_baths)} desired")
            breakdown.append(
                f"Baths: {baths_score}/15 pts ({_fmt(baths)} baths, needs {_fmt(desired_baths)})"
            )
    else:
        baths_score = 8
        if baths:
            highlights.append(f"{_fmt(baths)} baths")
        breakdown.append(f"Baths: {baths_score}/15 pts")

    # Budget
    down_payment, price = buyer.down_payment, prop.price
    if down_payment and price:
        ratio = down_payment / price * 100
        if ratio >= 20:
            budget_score = 20
            highlights.append(f"Strong down payment: {ratio:.0f}% of price")
        elif ratio >= 10:
            budget_score = 15
            highlights.append(f"Adequate down payment: {ratio:.0f}%")
        elif ratio >= 5:
            budget_score = 10
            highlights.append(f"Down payment: {ratio:.0f}%")
        else:
            budget_score = 5
            concerns.append(f"Low down payment ratio: {ratio:.0f}%")
        breakdown.append(f"Budget: {budget_score}/20 pts ({ratio:.0f}% down payment ratio)")
    else:
        budget_score = 10
        breakdown.append(f"Budget: {budget_score}/20 pts")

    total = min(100, location_score + beds_score + baths_score + budget_score)

    reasoning = f"{quality_label(total)} (Score: {total}/100)\n\nScore Breakdown:\n"
    reasoning += '\n'.join(f"• {line}" for line in breakdown)
    if is_priority:
        reasoning = f"[PRIORITY] {reasoning}"

    return MatchScore(
        score=total,
        location_score=location_score,
        beds_score=beds_score,
        baths_score=baths_score,
        budget_score=budget_score,
        reasoning=reasoning,
        highlights=highlights,
        concerns=concerns,
        is_priority=is_priority,
    )
