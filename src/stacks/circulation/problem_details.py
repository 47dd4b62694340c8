from stacks.util.problem_detail import ProblemDetail as pd

# Problem detail documents for circulation errors. Call detailed() to add
# information about the specific occurrence.

NOT_FOUND = pd(
    "http://stacks.example.org/terms/problem/not-found",
    404,
    "Not found",
    "The requested record does not exist.",
)

NO_ACTIVE_LOAN = pd(
    "http://stacks.example.org/terms/problem/no-active-loan",
    404,
    "No active loan",
    "The patron does not currently have this item on loan.",
)

NOT_QUEUED = pd(
    "http://stacks.example.org/terms/problem/not-queued",
    404,
    "Not in queue",
    "The patron is not waiting for this item.",
)

CONFLICT = pd(
    "http://stacks.example.org/terms/problem/conflict",
    409,
    "Conflict",
    "The request conflicts with the current state of the record.",
)

NO_AVAILABLE_COPIES = pd(
    "http://stacks.example.org/terms/problem/no-available-copies",
    409,
    "No available copies",
    "All copies of this item are currently out.",
)

ALREADY_QUEUED = pd(
    "http://stacks.example.org/terms/problem/already-queued",
    409,
    "Already queued",
    "The patron is already waiting for this item.",
)

ALREADY_CHECKED_OUT = pd(
    "http://stacks.example.org/terms/problem/already-checked-out",
    409,
    "Already checked out",
    "The patron already has this item on loan.",
)

PATRON_INACTIVE = pd(
    "http://stacks.example.org/terms/problem/patron-inactive",
    409,
    "Patron inactive",
    "The patron's account is inactive or locked.",
)

RENEWAL_ALREADY_PENDING = pd(
    "http://stacks.example.org/terms/problem/renewal-already-pending",
    409,
    "Renewal already pending",
    "A renewal request for this loan is already awaiting a decision.",
)

REQUEST_ALREADY_PROCESSED = pd(
    "http://stacks.example.org/terms/problem/request-already-processed",
    409,
    "Request already processed",
    "This request has already been decided.",
)

INVALID_STATE_TRANSITION = pd(
    "http://stacks.example.org/terms/problem/invalid-state-transition",
    409,
    "Invalid state transition",
    "The record cannot move to the requested state.",
)

CANNOT_RENEW = pd(
    "http://stacks.example.org/terms/problem/cannot-renew",
    409,
    "Cannot renew",
    "This loan cannot be renewed.",
)

FINE_ALREADY_SETTLED = pd(
    "http://stacks.example.org/terms/problem/fine-already-settled",
    409,
    "Fine already settled",
    "This fine has already been paid or waived.",
)

INVALID_INPUT = pd(
    "http://stacks.example.org/terms/problem/invalid-input",
    400,
    "Invalid input.",
    "You provided invalid or unrecognized input.",
)

INVALID_DUE_DATE = pd(
    "http://stacks.example.org/terms/problem/invalid-due-date",
    400,
    "Invalid due date",
    "The due date must be in the future.",
)

CANNOT_EXTEND = pd(
    "http://stacks.example.org/terms/problem/cannot-extend",
    400,
    "Cannot extend",
    "The due date of this loan cannot be extended.",
)

INVALID_PAYMENT_AMOUNT = pd(
    "http://stacks.example.org/terms/problem/invalid-payment-amount",
    400,
    "Invalid payment amount",
    "The payment amount is not valid for this fine.",
)

LIMIT_EXCEEDED = pd(
    "http://stacks.example.org/terms/problem/limit-exceeded",
    403,
    "Limit exceeded",
    "The library's limit for this action has been reached.",
)

EXTENSION_LIMIT_REACHED = pd(
    "http://stacks.example.org/terms/problem/extension-limit-reached",
    403,
    "Extension limit reached",
    "This loan has already been extended the maximum number of times.",
)

RENEWAL_LIMIT_REACHED = pd(
    "http://stacks.example.org/terms/problem/renewal-limit-reached",
    403,
    "Renewal limit reached",
    "This loan has already been renewed the maximum number of times.",
)

FORBIDDEN = pd(
    "http://stacks.example.org/terms/problem/forbidden",
    403,
    "Forbidden",
    "You are not allowed to do that.",
)

NOT_A_QUEUE_MEMBER = pd(
    "http://stacks.example.org/terms/problem/not-a-queue-member",
    403,
    "Not a queue member",
    "Only a member of this queue can withdraw from it.",
)

STORE_UNAVAILABLE = pd(
    "http://stacks.example.org/terms/problem/store-unavailable",
    503,
    "Service unavailable",
    "The circulation database could not be reached. Try again later.",
)
