# OpenAPI приклади відповідей з помилками (спільні для роутерів)


def error_response(description: str, detail) -> dict:
    return {
        "description": description,
        "content": {
            "application/json": {
                "example": {"detail": detail}
            },
        },
    }


UNAUTHORIZED = error_response("Unauthorized.", "Not authenticated.")
FORBIDDEN_ADMIN = error_response("Forbidden.", "Invalid admin token.")
FORBIDDEN_SERVICE = error_response("Forbidden.", "Invalid service token.")
FORBIDDEN_USER = error_response("Forbidden.", "Invalid user token.")
INSUFFICIENT_FUNDS = error_response(
    "Insufficient funds.",
    {
        "error": "insufficient_funds",
        "message": "Insufficient funds.",
        "wallet_id": 1,
        "attempted": "200.00",
        "available": "150.50",
    },
)
WALLET_NOT_FOUND = error_response("Not found.", "Wallet '1' not found.")
USER_NOT_FOUND = error_response("Not found.", "User 'user-1' not found.")
SUBSCRIPTION_NOT_FOUND = error_response(
    "Not found.", "Subscription 'sub-1' not found."
)
TRIP_NOT_FOUND = error_response("Not found.", "Trip 'trip-1' not found.")
ALREADY_TERMINAL = error_response(
    "Conflict.", "Subscription 'sub-1' is already cancelled."
)
VALIDATION_ERROR = error_response(
    "Unprocessable Entity.", "Reason must be at least 3 characters."
)
SERVER_ERROR = error_response("Internal Server Error.", "Internal Server Error.")
