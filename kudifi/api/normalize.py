def normalize_ussd_payload(payload: dict) -> dict:
    """
    Accepts the field-name variants different USSD aggregators send and converts
    them into the canonical structure expected by UssdRequest:

    {"sessionId": "...", "serviceCode": "...", "phoneNumber": "...", "text": "..."}
    """
    if payload is None:
        payload = {}

    session_id = (
        payload.get("sessionId")
        or payload.get("session_id")
        or payload.get("SESSION_ID")
        or ""
    )
    service_code = payload.get("serviceCode") or payload.get("service_code") or ""
    phone_number = (
        payload.get("phoneNumber")
        or payload.get("phone_number")
        or payload.get("phone")
        or payload.get("msisdn")
        or payload.get("MSISDN")
        or ""
    )
    text = payload.get("text")
    if text is None:
        text = payload.get("input") or payload.get("ussdString") or ""

    return {
        "sessionId": str(session_id),
        "serviceCode": str(service_code),
        "phoneNumber": str(phone_number),
        "text": str(text),
    }
