"""
Referral analytics module.

Technical Leads share referral links; each form submission made through one
records the TL's email on the response. This module turns those rows into
leaderboards, per-TL dashboards and admin monitors.
"""
