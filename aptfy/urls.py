from django.urls import path

from aptfy.views import (
    AuthCallbackView,
    AuthLoginView,
    AuthLogoutView,
    PaymentClaimView,
    PaymentCompleteView,
    PaymentCreateView,
    PaymentDetailView,
    PaymentExecuteView,
    PaymentUpdateView,
    RegisterUserView,
    ResolveEmailView,
    SendDirectView,
    TransactionsView,
)
from aptfy.views_escrow import (
    EscrowCancelView,
    EscrowClaimExpiredView,
    EscrowCreateView,
    EscrowDetailView,
    EscrowReleaseView,
    EscrowStatsView,
    EscrowV2ArbitratedCreateView,
    EscrowV2CancelView,
    EscrowV2CreateView,
    EscrowV2DetailView,
    EscrowV2ReleaseView,
    EscrowV2StatsView,
    EscrowV2TimeLockedCreateView,
)

app_name = 'aptfy'

urlpatterns = [
    path('escrow/stats', EscrowStatsView.as_view(), name='escrow-stats'),
    path('escrow/create', EscrowCreateView.as_view(), name='escrow-create'),
    path('escrow/release', EscrowReleaseView.as_view(), name='escrow-release'),
    path('escrow/cancel', EscrowCancelView.as_view(), name='escrow-cancel'),
    path('escrow/v2/stats', EscrowV2StatsView.as_view(), name='escrow-v2-stats'),
    path('escrow/v2/create', EscrowV2CreateView.as_view(), name='escrow-v2-create'),
    path('escrow/v2/create-time-locked', EscrowV2TimeLockedCreateView.as_view(),
         name='escrow-v2-create-time-locked'),
    path('escrow/v2/create-arbitrated', EscrowV2ArbitratedCreateView.as_view(),
         name='escrow-v2-create-arbitrated'),
    path('escrow/v2/release', EscrowV2ReleaseView.as_view(), name='escrow-v2-release'),
    path('escrow/v2/cancel', EscrowV2CancelView.as_view(), name='escrow-v2-cancel'),
    path('escrow/v2/claim-expired', EscrowClaimExpiredView.as_view(), name='escrow-v2-claim-expired'),
    path('escrow/v2/<str:escrow_id>', EscrowV2DetailView.as_view(), name='escrow-v2-detail'),
    path('escrow/<str:escrow_id>', EscrowDetailView.as_view(), name='escrow-detail'),

    path('payments/create', PaymentCreateView.as_view(), name='payment-create'),
    path('payments/claim', PaymentClaimView.as_view(), name='payment-claim'),
    path('payments/update', PaymentUpdateView.as_view(), name='payment-update'),
    path('payments/execute', PaymentExecuteView.as_view(), name='payment-execute'),
    path('payments/send-direct', SendDirectView.as_view(), name='payment-send-direct'),
    path('payments/<str:payment_id>/complete', PaymentCompleteView.as_view(), name='payment-complete'),
    path('payments/<str:payment_id>', PaymentDetailView.as_view(), name='payment-detail'),

    path('register-user', RegisterUserView.as_view(), name='register-user'),
    path('resolve-email', ResolveEmailView.as_view(), name='resolve-email'),
    path('transactions', TransactionsView.as_view(), name='transactions'),

    path('auth/login', AuthLoginView.as_view(), name='auth-login'),
    path('auth/callback', AuthCallbackView.as_view(), name='auth-callback'),
    path('auth/logout', AuthLogoutView.as_view(), name='auth-logout'),
]
