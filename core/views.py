from django.http import HttpResponse, JsonResponse
from django.utils.html import format_html, format_html_join

ENDPOINTS = (
    ('POST', '/api/payments/create', 'Create a payment link for an email address'),
    ('POST', '/api/payments/send-direct', 'Send APT or USDC straight to an address'),
    ('POST', '/api/escrow/create', 'Lock funds in an on-chain escrow'),
    ('POST', '/api/escrow/v2/create-time-locked', 'Escrow with a release time and expiry'),
    ('GET', '/api/auth/login', 'Sign in with Google'),
)


def home(request):
    rows = format_html_join(
        '\n', '<li><code>{} {}</code> {}</li>', ENDPOINTS)
    page = format_html(
        '<!DOCTYPE html><html lang="en"><head><meta charset="UTF-8" />'
        '<title>Aptfy</title></head><body><h1>Aptfy</h1>'
        '<p>Payment links, direct transfers and escrow on Aptos, '
        'signed with a Google account.</p><ul>{}</ul></body></html>',
        rows,
    )
    return HttpResponse(page, content_type="text/html; charset=utf-8")


def health(request):
    return JsonResponse({"status": "ok"})
