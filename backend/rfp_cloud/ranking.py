# ranking.py
# Deterministic scoring of the proposals received for one RFP.
import math
from typing import Dict, List, Optional, Sequence, Tuple

from . import models
from .exceptions import NotFoundError
from .storage import JsonStore

PRICE_WEIGHT = 30
COMPLETENESS_WEIGHT = 30
DELIVERY_WEIGHT = 20
WARRANTY_WEIGHT = 10
PAYMENT_TERMS_POINTS = 10
WARRANTY_FULL_MONTHS = 24


def _money(amount: float) -> str:
    if float(amount).is_integer():
        return f"{int(amount):,}"
    return f"{amount:,.2f}"


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def score_proposal(proposal: models.Proposal, rfp: models.RFP) -> Tuple[float, List[str]]:
    """Raw (unrounded) score out of 100 plus the reasons behind it."""
    score = 0.0
    reasons = []

    # Price, lower is better
    budget = rfp.budget_usd
    if proposal.price_usd is not None and budget:
        diff = budget - proposal.price_usd
        if diff >= 0:
            score += min(PRICE_WEIGHT, diff / budget * PRICE_WEIGHT)
            if diff > 0:
                reasons.append(f"Under budget by ${_money(diff)}")
        else:
            reasons.append(f"Over budget by ${_money(-diff)}")

    if proposal.completeness_score is not None:
        completeness = proposal.completeness_score
        score += completeness / 100 * COMPLETENESS_WEIGHT
        pct = _round_half_up(completeness)
        if completeness >= 90:
            reasons.append(f"Excellent response completeness ({pct}%)")
        elif completeness >= 70:
            reasons.append(f"Good response completeness ({pct}%)")
        else:
            reasons.append(f"Incomplete response ({pct}%)")

    # Delivery, faster is better
    wanted_days = rfp.delivery_days
    if proposal.delivery_days is not None and wanted_days:
        diff = wanted_days - proposal.delivery_days
        if diff >= 0:
            score += min(DELIVERY_WEIGHT, diff / wanted_days * DELIVERY_WEIGHT)
            if diff > 0:
                reasons.append(f"{diff} days faster than requested")
        else:
            reasons.append(f"{-diff} days slower than requested")

    if proposal.warranty_months is not None:
        score += min(WARRANTY_WEIGHT, proposal.warranty_months / WARRANTY_FULL_MONTHS * WARRANTY_WEIGHT)
        if proposal.warranty_months >= WARRANTY_FULL_MONTHS:
            reasons.append(f"Excellent warranty coverage ({proposal.warranty_months} months)")

    if proposal.payment_terms and proposal.payment_terms.strip():
        score += PAYMENT_TERMS_POINTS
        reasons.append("Clear payment terms provided")

    return score, reasons


def _recommendation(index: int, count: int) -> models.Recommendation:
    if index == 0:
        return models.Recommendation.BEST_CHOICE
    if index == count - 1:
        return models.Recommendation.LEAST_SUITABLE
    return models.Recommendation.CONSIDER


def rank(rfp: models.RFP, proposals: Sequence[models.Proposal],
         vendors: Dict[str, models.Vendor]) -> models.ComparisonResult:
    """
    Score, sort and annotate ``proposals`` (in retrieval order) for ``rfp``.
    Equal scores keep their retrieval order.
    """
    if not proposals:
        raise NotFoundError("No proposals found for this RFP", resource="proposals")

    scored = []
    for p in proposals:
        raw, reasons = score_proposal(p, rfp)
        scored.append((p, _round_half_up(raw), reasons))
    scored.sort(key=lambda item: item[1], reverse=True)

    ranked = []
    for i, (p, score, reasons) in enumerate(scored):
        vendor: Optional[models.Vendor] = vendors.get(p.vendor_id)
        ranked.append(models.RankedProposal(
            proposal=p,
            vendor_name=vendor.name if vendor else "Unknown",
            vendor_email=vendor.contact_email if vendor else None,
            ranking_score=score,
            ranking_reasons=reasons,
            rank=i + 1,
            recommendation=_recommendation(i, len(scored)),
        ))

    priced = [p.price_usd for p in proposals if p.price_usd is not None]
    best = ranked[0]
    recommendation = f"{best.vendor_name} offers the best overall value with a score of {best.ranking_score}/100."
    if best.ranking_reasons:
        recommendation += " " + ". ".join(best.ranking_reasons) + "."

    return models.ComparisonResult(
        rfp=models.RFPBrief(id=rfp.id, title=rfp.title, budget_usd=rfp.budget_usd),
        ranked_proposals=ranked,
        summary=models.RankingSummary(
            total_proposals=len(ranked),
            best_vendor=best.vendor_name,
            best_score=best.ranking_score,
            average_price=sum(priced) / len(priced) if priced else 0.0,
            recommendation=recommendation,
        ),
    )


def compare_proposals(store: JsonStore, rfp_id: str) -> models.ComparisonResult:
    rfp = store.get("rfps", rfp_id)
    if rfp is None:
        raise NotFoundError("RFP not found", resource="rfps")
    proposals = store.find_all("proposals", rfp_id=rfp_id)
    vendors = {v.id: v for v in store.find_all("vendors")}
    return rank(rfp, proposals, vendors)
