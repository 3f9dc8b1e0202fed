"""
Referral analytics.

Everything here is a pure function over already-fetched referral rows (objects
exposing ``id, referred_by, event_id, event_title, user_name, form_title,
created_at``). Callers pass ``now`` so period boundaries are explicit.
"""
from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Iterable, Protocol

from app.ctc.constants import ANONYMOUS, DEFAULT_FORM_TITLE, UNKNOWN_EVENT, UNKNOWN_TL
from app.ctc.utils import isoformat

if TYPE_CHECKING:
    from app.ctc.models import User


class Referral(Protocol):
    id: int
    referred_by: str | None
    event_id: int
    event_title: str | None
    user_name: str | None
    form_title: str | None
    created_at: datetime


# ---------- Period boundaries ----------
def month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def week_start(now: datetime) -> datetime:
    """Most recent Sunday at 00:00."""
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    days_since_sunday = (now.weekday() + 1) % 7
    return midnight - timedelta(days=days_since_sunday)


def rolling_week_start(now: datetime) -> datetime:
    return now - timedelta(days=7)


def _shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


# ---------- Building blocks ----------
def newest_first(referrals: Iterable[Referral]) -> list[Referral]:
    return sorted(referrals, key=lambda r: (r.created_at, r.id), reverse=True)


def count_since(referrals: Iterable[Referral], since: datetime) -> int:
    return sum(1 for r in referrals if r.created_at >= since)


def group_by_lead(referrals: Iterable[Referral]) -> dict[str, list[Referral]]:
    """TL email -> referrals, keeping input order. Rows without a referrer are skipped."""
    groups: dict[str, list[Referral]] = {}
    for r in referrals:
        if not r.referred_by:
            continue
        groups.setdefault(r.referred_by, []).append(r)
    return groups


def top_events(referrals: Iterable[Referral], limit: int) -> list[dict[str, Any]]:
    counts: Counter[int] = Counter()
    titles: dict[int, str] = {}
    for r in referrals:
        counts[r.event_id] += 1
        if r.event_id not in titles or (titles[r.event_id] == UNKNOWN_EVENT and r.event_title):
            titles[r.event_id] = r.event_title or UNKNOWN_EVENT
    # Counter.most_common keeps first-seen order for ties.
    return [
        {"eventId": event_id, "eventTitle": titles[event_id], "referrals": n}
        for event_id, n in counts.most_common(limit)
    ]


def serialize_referral(r: Referral) -> dict[str, Any]:
    return {
        "id": r.id,
        "eventId": r.event_id,
        "eventTitle": r.event_title or UNKNOWN_EVENT,
        "userName": r.user_name or ANONYMOUS,
        "formTitle": r.form_title or DEFAULT_FORM_TITLE,
        "createdAt": isoformat(r.created_at),
    }


def recent_referrals(referrals: Iterable[Referral], limit: int) -> list[dict[str, Any]]:
    return [serialize_referral(r) for r in newest_first(referrals)[:limit]]


def monthly_breakdown(referrals: Iterable[Referral], now: datetime, months: int = 6) -> list[dict[str, Any]]:
    """Referral counts for the current month and the ``months - 1`` before it, oldest first."""
    rows = list(referrals)
    out = []
    for offset in range(months - 1, -1, -1):
        year, month = _shift_month(now.year, now.month, -offset)
        start = datetime(year, month, 1)
        next_year, next_month = _shift_month(year, month, 1)
        end = datetime(next_year, next_month, 1)
        out.append(
            {
                "month": start.strftime("%b %Y"),
                "referrals": sum(1 for r in rows if start <= r.created_at < end),
            }
        )
    return out


def summarize_lead(
    referrals: Iterable[Referral],
    now: datetime,
    *,
    week_since: datetime,
    top_n: int,
    recent_n: int,
    include_monthly: bool = False,
) -> dict[str, Any]:
    rows = list(referrals)
    summary: dict[str, Any] = {
        "totalReferrals": len(rows),
        "thisMonth": count_since(rows, month_start(now)),
        "thisWeek": count_since(rows, week_since),
        "topEvents": top_events(rows, top_n),
        "recentReferrals": recent_referrals(rows, recent_n),
    }
    if include_monthly:
        summary["monthlyBreakdown"] = monthly_breakdown(rows, now)
    return summary


# ---------- Views ----------
def _lead_card(email: str, lead: "User | None") -> dict[str, Any]:
    return {
        "name": (lead.name if lead else None) or UNKNOWN_TL,
        "email": email,
        "avatar": lead.image if lead else None,
    }


def monthly_leaderboard(
    referrals: Iterable[Referral],
    leads_by_email: dict[str, "User"],
    now: datetime,
    *,
    limit: int = 5,
    recent_limit: int = 10,
) -> dict[str, Any]:
    """Public home-page view: this month's TL ranking plus the latest referrals."""
    since = month_start(now)
    this_month = newest_first(r for r in referrals if r.referred_by and r.created_at >= since)
    groups = group_by_lead(this_month)

    # Group order is newest-referral-first, so ties favour the most recently active TL.
    ranked = sorted(groups.items(), key=lambda kv: len(kv[1]), reverse=True)
    leaderboard = []
    for rank, (email, rows) in enumerate(ranked[:limit], start=1):
        card = _lead_card(email, leads_by_email.get(email))
        card.update({"rank": rank, "referrals": len(rows)})
        leaderboard.append(card)

    recent = []
    for r in this_month[:recent_limit]:
        item = serialize_referral(r)
        item["technicalLead"] = _lead_card(r.referred_by or "", leads_by_email.get(r.referred_by or ""))
        recent.append(item)

    return {
        "leaderboard": leaderboard,
        "recentReferrals": recent,
        "stats": {
            "totalReferralsThisMonth": len(this_month),
            "activeTLsThisMonth": len(groups),
            "totalTLs": sum(1 for email in groups if email in leads_by_email),
        },
    }


def leads_overview(
    leads: list["User"],
    referrals: Iterable[Referral],
    now: datetime,
    *,
    calendar_week: bool,
    top_n: int,
    recent_n: int,
    include_monthly: bool,
) -> tuple[list[dict[str, Any]], dict[str, int]]:
    """
    Per-TL stats for the admin monitors, sorted by total referrals.
    Returns (leads, summary).
    """
    rows = list(referrals)
    groups = group_by_lead(rows)
    week_since = week_start(now) if calendar_week else rolling_week_start(now)

    items = []
    for lead in leads:
        email = lead.email.lower()
        lead_rows = groups.get(email, [])
        stats = summarize_lead(
            lead_rows,
            now,
            week_since=week_since,
            top_n=top_n,
            recent_n=recent_n,
            include_monthly=include_monthly,
        )
        newest = newest_first(lead_rows)[:1]
        items.append(
            {
                "id": lead.id,
                "name": lead.name or UNKNOWN_TL,
                "email": lead.email,
                "avatar": lead.image,
                "bio": lead.bio,
                "location": lead.location,
                "website": lead.website,
                "joinedDate": isoformat(lead.created_at),
                "lastActive": isoformat(newest[0].created_at) if newest else None,
                "stats": stats,
            }
        )
    items.sort(key=lambda item: item["stats"]["totalReferrals"], reverse=True)

    summary = {
        "totalTLs": len(items),
        "activeTLs": sum(1 for item in items if item["stats"]["totalReferrals"] > 0),
        "totalReferrals": sum(item["stats"]["totalReferrals"] for item in items),
        "thisMonthReferrals": sum(item["stats"]["thisMonth"] for item in items),
    }
    return items, summary
