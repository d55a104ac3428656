"""
Escrow views.

Release, cancel and create act as the caller's keyless account, rebuilt
from the identity token and serialized ephemeral key pair in the body.
"""
from typing import Any

from pydantic import Field
from rest_framework import status
from rest_framework.response import Response

from aptfy import escrow
from aptfy.chain.factory import get_chain_client
from aptfy.views import AptfyAPIView, RequestBody, parse_body


class KeylessRequest(RequestBody):
    jwt: Any = None
    ephemeral_key_pair_str: Any = Field(None, alias='ephemeralKeyPairStr')


class EscrowActionRequest(KeylessRequest):
    escrow_id: Any = Field(None, alias='escrowId')


class EscrowCreateRequest(KeylessRequest):
    recipient: Any = None
    amount: Any = None
    memo: Any = None


class TimeLockedEscrowRequest(EscrowCreateRequest):
    release_time: Any = Field(None, alias='releaseTime')
    expiry_time: Any = Field(None, alias='expiryTime')


class ArbitratedEscrowRequest(EscrowCreateRequest):
    arbitrator: Any = None
    expiry_time: Any = Field(None, alias='expiryTime')


def escrow_body(model, request) -> dict:
    return parse_body(model, request.data).model_dump(by_alias=True)


class EscrowDetailView(AptfyAPIView):
    def get(self, request, escrow_id: str, *args, **kwargs) -> Response:
        details = escrow.get_escrow(escrow_id, get_chain_client())
        return Response({'success': True, 'escrow': details.to_dict()},
                        status=status.HTTP_200_OK)


class EscrowStatsView(AptfyAPIView):
    def get(self, request, *args, **kwargs) -> Response:
        stats = escrow.get_escrow_stats(get_chain_client())
        return Response({'success': True, 'stats': stats.to_dict()},
                        status=status.HTTP_200_OK)


class EscrowCreateView(AptfyAPIView):
    def post(self, request, *args, **kwargs) -> Response:
        data = escrow_body(EscrowCreateRequest, request)
        result = escrow.create_escrow(data, get_chain_client())
        return Response(result.to_dict(), status=status.HTTP_200_OK)


class EscrowReleaseView(AptfyAPIView):
    def post(self, request, *args, **kwargs) -> Response:
        data = escrow_body(EscrowActionRequest, request)
        result = escrow.release_escrow(data, get_chain_client())
        return Response(result.to_dict(), status=status.HTTP_200_OK)


class EscrowCancelView(AptfyAPIView):
    def post(self, request, *args, **kwargs) -> Response:
        data = escrow_body(EscrowActionRequest, request)
        result = escrow.cancel_escrow(data, get_chain_client())
        return Response(result.to_dict(), status=status.HTTP_200_OK)


class EscrowV2DetailView(AptfyAPIView):
    def get(self, request, escrow_id: str, *args, **kwargs) -> Response:
        details = escrow.get_escrow_v2(escrow_id, get_chain_client())
        return Response({'success': True, 'escrow': details}, status=status.HTTP_200_OK)


class EscrowV2StatsView(AptfyAPIView):
    def get(self, request, *args, **kwargs) -> Response:
        stats = escrow.get_escrow_v2_stats(get_chain_client())
        return Response({'success': True, 'stats': stats.to_dict()},
                        status=status.HTTP_200_OK)


class EscrowV2CreateView(AptfyAPIView):
    def post(self, request, *args, **kwargs) -> Response:
        data = escrow_body(EscrowCreateRequest, request)
        result = escrow.create_standard_escrow(data, get_chain_client())
        return Response(result.to_dict(), status=status.HTTP_200_OK)


class EscrowV2TimeLockedCreateView(AptfyAPIView):
    def post(self, request, *args, **kwargs) -> Response:
        data = escrow_body(TimeLockedEscrowRequest, request)
        result = escrow.create_time_locked_escrow(data, get_chain_client())
        return Response(result.to_dict(), status=status.HTTP_200_OK)


class EscrowV2ArbitratedCreateView(AptfyAPIView):
    def post(self, request, *args, **kwargs) -> Response:
        data = escrow_body(ArbitratedEscrowRequest, request)
        result = escrow.create_arbitrated_escrow(data, get_chain_client())
        return Response(result.to_dict(), status=status.HTTP_200_OK)


class EscrowV2ReleaseView(AptfyAPIView):
    def post(self, request, *args, **kwargs) -> Response:
        data = escrow_body(EscrowActionRequest, request)
        result = escrow.release_escrow_v2(data, get_chain_client())
        return Response(result.to_dict(), status=status.HTTP_200_OK)


class EscrowV2CancelView(AptfyAPIView):
    def post(self, request, *args, **kwargs) -> Response:
        data = escrow_body(EscrowActionRequest, request)
        result = escrow.cancel_escrow_v2(data, get_chain_client())
        return Response(result.to_dict(), status=status.HTTP_200_OK)


class EscrowClaimExpiredView(AptfyAPIView):
    def post(self, request, *args, **kwargs) -> Response:
        data = escrow_body(EscrowActionRequest, request)
        result = escrow.claim_expired_escrow(data, get_chain_client())
        return Response(result.to_dict(), status=status.HTTP_200_OK)
