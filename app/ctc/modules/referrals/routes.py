from __future__ import annotations

from datetime import datetime

from flask import Blueprint, abort

from app.ctc.constants import DEFAULT_TL_BIO, ROLE_TECHNICAL_LEAD
from app.ctc.db import db_session
from app.ctc.models import User
from app.ctc.modules.forms.models import FormResponse
from app.ctc.modules.referrals.service import (
    count_since,
    leads_overview,
    month_start,
    monthly_leaderboard,
    rolling_week_start,
    summarize_lead,
)
from app.ctc.rbac import current_user, require_permission
from app.ctc.utils import isoformat

bp = Blueprint("referrals", __name__)


def _referral_query(s):
    return (
        s.query(FormResponse)
        .filter(FormResponse.referred_by.isnot(None))
        .order_by(FormResponse.created_at.desc(), FormResponse.id.desc())
    )


def _technical_leads(s) -> list[User]:
    return (
        s.query(User)
        .filter(User.role == ROLE_TECHNICAL_LEAD, User.is_active.is_(True))
        .order_by(User.created_at.asc(), User.id.asc())
        .all()
    )


@bp.get("/api/home/referrals")
def home_referrals():
    s = db_session()
    now = datetime.utcnow()
    referrals = _referral_query(s).filter(FormResponse.created_at >= month_start(now)).all()
    emails = {r.referred_by for r in referrals}
    leads = (
        s.query(User).filter(User.email.in_(sorted(emails)), User.role == ROLE_TECHNICAL_LEAD).all()
        if emails
        else []
    )
    data = monthly_leaderboard(referrals, {u.email.lower(): u for u in leads}, now, limit=5, recent_limit=10)
    return {"success": True, **data}


@bp.get("/api/technical-lead/referrals")
@require_permission("referrals.view_own")
def technical_lead_referrals():
    s = db_session()
    u = current_user()
    now = datetime.utcnow()
    referrals = _referral_query(s).filter(FormResponse.referred_by == u.email.lower()).all()
    stats = summarize_lead(referrals, now, week_since=rolling_week_start(now), top_n=5, recent_n=10)
    return {
        "totalReferrals": stats["totalReferrals"],
        "thisMonth": stats["thisMonth"],
        "topEvents": stats["topEvents"],
        "recentReferrals": stats["recentReferrals"],
    }


@bp.get("/api/profile/technical-lead/<path:email>")
def technical_lead_profile(email: str):
    s = db_session()
    email = email.strip().lower()
    lead = s.query(User).filter(User.email == email).one_or_none()
    if not lead or lead.role != ROLE_TECHNICAL_LEAD:
        abort(404, description="Technical Lead not found")

    now = datetime.utcnow()
    referrals = _referral_query(s).filter(FormResponse.referred_by == email).all()
    stats = summarize_lead(referrals, now, week_since=rolling_week_start(now), top_n=5, recent_n=10)
    return {
        "profile": {
            "id": lead.id,
            "name": lead.name,
            "email": lead.email,
            "image": lead.image,
            "bio": lead.bio or DEFAULT_TL_BIO,
            "location": lead.location,
            "website": lead.website,
            "role": lead.role,
            "joinedDate": isoformat(lead.created_at),
        },
        "stats": {
            "totalReferrals": stats["totalReferrals"],
            "thisMonth": stats["thisMonth"],
            "topEvents": stats["topEvents"],
            "recentReferrals": stats["recentReferrals"],
        },
    }


@bp.get("/api/admin/technical-leads")
@require_permission("technical_leads.view")
def admin_technical_leads():
    s = db_session()
    now = datetime.utcnow()
    leads = _technical_leads(s)
    emails = sorted(u.email.lower() for u in leads)
    referrals = _referral_query(s).filter(FormResponse.referred_by.in_(emails)).all() if emails else []
    items, summary = leads_overview(
        leads,
        referrals,
        now,
        calendar_week=False,
        top_n=3,
        recent_n=5,
        include_monthly=False,
    )
    return {"technicalLeads": items, "summary": summary}


@bp.get("/api/admin/technical-leads/profiles")
@require_permission("technical_leads.view")
def admin_technical_lead_profiles():
    s = db_session()
    now = datetime.utcnow()
    leads = _technical_leads(s)
    referrals = _referral_query(s).all()
    items, summary = leads_overview(
        leads,
        referrals,
        now,
        calendar_week=True,
        top_n=5,
        recent_n=10,
        include_monthly=True,
    )
    # This view reports platform-wide volume, including referrers who are not (or no longer) TLs.
    summary["totalReferrals"] = len(referrals)
    summary["thisMonthReferrals"] = count_since(referrals, month_start(now))
    return {"profiles": items, "summary": summary}
