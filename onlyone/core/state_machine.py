# State constants for the signup flow, the OTP challenge and the result poller

# Signup / login stages (linear; back navigation steps one stage at a time)
CHOOSE_METHOD = "CHOOSE_METHOD"
ENTER_CONTACT = "ENTER_CONTACT"
ENTER_PERSONAL_DETAILS = "ENTER_PERSONAL_DETAILS"
# Password entry; only when the flow is configured to collect credentials
ENTER_CREDENTIALS = "ENTER_CREDENTIALS"
AWAITING_OTP = "AWAITING_OTP"
# Terminal: session established, no way back into the form
COMMITTED = "COMMITTED"

SIGNUP_STAGES = (CHOOSE_METHOD, ENTER_CONTACT, ENTER_PERSONAL_DETAILS, ENTER_CREDENTIALS, AWAITING_OTP, COMMITTED)
LOGIN_STAGES = (CHOOSE_METHOD, ENTER_CONTACT, AWAITING_OTP, COMMITTED)

# Stage where the username is typed; uniqueness conflicts land here
USERNAME_STAGE = ENTER_PERSONAL_DETAILS

MODE_SIGNUP = "signup"
MODE_LOGIN = "login"

METHOD_PHONE = "phone"
METHOD_EMAIL = "email"
CONTACT_METHODS = (METHOD_PHONE, METHOD_EMAIL)

# OTP challenge status
OTP_ENTERING = "entering"
OTP_SUBMITTING = "submitting"
OTP_VERIFIED = "verified"
OTP_REJECTED = "rejected"

# Verification outcomes reported to the host UI
VERIFIED = "VERIFIED"
REJECTED = "REJECTED"
USERNAME_TAKEN = "USERNAME_TAKEN"
ACCOUNT_NOT_FOUND = "ACCOUNT_NOT_FOUND"
FAILED = "FAILED"

# Username availability
USERNAME_IDLE = "idle"
USERNAME_CHECKING = "checking"
USERNAME_AVAILABLE = "available"
USERNAME_TAKEN_STATUS = "taken"

# Async result outcome
POLL_PENDING = "pending"
POLL_RESOLVED = "resolved"
POLL_TIMED_OUT = "timed_out"
