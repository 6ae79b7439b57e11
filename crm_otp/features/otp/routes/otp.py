from fastapi import APIRouter, Depends, HTTPException, Request, status

from crm_otp.features.otp.dependencies.otp import get_challenge_service, get_otp_service
from crm_otp.features.otp.schemas.otp import (
    OTPIssuedResponse,
    OTPRequest,
    OTPVerifyRequest,
    WelcomeEmailRequest,
)
from crm_otp.features.otp.services.challenge_service import OTPChallengeService
from crm_otp.features.otp.services.otp_service import OTPService
from crm_otp.platform.config import settings
from crm_otp.platform.logger import get_logger
from crm_otp.platform.response import api_response
from crm_otp.platform.utils.rate_limit import rate_limit

logger = get_logger("otp_routes")

router = APIRouter(prefix="/auth", tags=["OTP"])

SEND_FAILED_MESSAGE = "Failed to send OTP, please try again"


async def _issue_and_send(
    request: OTPRequest,
    http_request: Request,
    challenges: OTPChallengeService,
    otp_service: OTPService,
):
    rate_limit(f"otp:{request.email.lower()}", settings.OTP_REQUEST_LIMIT)

    credential = await challenges.issue(
        request.email,
        purpose=request.purpose,
        ip_address=http_request.client.host if http_request.client else None,
        user_agent=http_request.headers.get("user-agent"),
    )
    result = await otp_service.send_otp_email(
        request.email, credential.code, request.name, request.purpose
    )
    if not result.success:
        logger.error(f"OTP delivery to {request.email} failed: {result.error}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=SEND_FAILED_MESSAGE)

    return OTPIssuedResponse(
        email=request.email,
        purpose=request.purpose,
        expires_at=credential.expires_at,
    )


@router.post(
    "/otp/request",
    response_model=dict,
    summary="Request an OTP",
    description="Issue a one-time passcode and send it to the given email address",
)
async def request_otp(
    request: OTPRequest,
    http_request: Request,
    challenges: OTPChallengeService = Depends(get_challenge_service),
    otp_service: OTPService = Depends(get_otp_service),
):
    data = await _issue_and_send(request, http_request, challenges, otp_service)
    return api_response(data=data, message="OTP sent to your email")


@router.post(
    "/otp/resend",
    response_model=dict,
    summary="Resend an OTP",
    description="Issue a fresh OTP; any code sent earlier stops working",
)
async def resend_otp(
    request: OTPRequest,
    http_request: Request,
    challenges: OTPChallengeService = Depends(get_challenge_service),
    otp_service: OTPService = Depends(get_otp_service),
):
    data = await _issue_and_send(request, http_request, challenges, otp_service)
    return api_response(data=data, message="A new OTP has been sent to your email")


@router.post(
    "/otp/verify",
    response_model=dict,
    summary="Verify an OTP",
)
async def verify_otp(
    request: OTPVerifyRequest,
    challenges: OTPChallengeService = Depends(get_challenge_service),
):
    """
    Verify a submitted code against the outstanding challenge.

    Wrong and expired codes get the same answer.
    """
    result = await challenges.verify(request.email, request.code, request.purpose)
    if not result.valid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error)

    return api_response(
        data={"email": request.email, "purpose": request.purpose},
        message="OTP verified successfully",
    )


@router.post(
    "/welcome",
    response_model=dict,
    status_code=status.HTTP_200_OK,
    summary="Send account welcome email",
    description="Email a newly provisioned user their temporary password and role",
)
async def send_welcome(
    request: WelcomeEmailRequest,
    otp_service: OTPService = Depends(get_otp_service),
):
    result = await otp_service.send_welcome_email(
        request.email, request.name, request.temporary_password, request.role
    )
    if not result.success:
        logger.error(f"Welcome email to {request.email} failed: {result.error}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to send welcome email, please try again",
        )

    return api_response(
        data={"email": request.email, "message_id": result.message_id},
        message="Welcome email sent",
    )
