"""LDAP result codes and the exception that carries them."""

from __future__ import annotations

from typing import Any

from .ber import ClassType, Packet, TagType

LDAP_RESULT_SUCCESS = 0
LDAP_RESULT_OPERATIONS_ERROR = 1
LDAP_RESULT_PROTOCOL_ERROR = 2
LDAP_RESULT_TIME_LIMIT_EXCEEDED = 3
LDAP_RESULT_SIZE_LIMIT_EXCEEDED = 4
LDAP_RESULT_COMPARE_FALSE = 5
LDAP_RESULT_COMPARE_TRUE = 6
LDAP_RESULT_AUTH_METHOD_NOT_SUPPORTED = 7
LDAP_RESULT_STRONG_AUTH_REQUIRED = 8
LDAP_RESULT_REFERRAL = 10
LDAP_RESULT_ADMIN_LIMIT_EXCEEDED = 11
LDAP_RESULT_UNAVAILABLE_CRITICAL_EXTENSION = 12
LDAP_RESULT_CONFIDENTIALITY_REQUIRED = 13
LDAP_RESULT_SASL_BIND_IN_PROGRESS = 14
LDAP_RESULT_NO_SUCH_ATTRIBUTE = 16
LDAP_RESULT_UNDEFINED_ATTRIBUTE_TYPE = 17
LDAP_RESULT_INAPPROPRIATE_MATCHING = 18
LDAP_RESULT_CONSTRAINT_VIOLATION = 19
LDAP_RESULT_ATTRIBUTE_OR_VALUE_EXISTS = 20
LDAP_RESULT_INVALID_ATTRIBUTE_SYNTAX = 21
LDAP_RESULT_NO_SUCH_OBJECT = 32
LDAP_RESULT_ALIAS_PROBLEM = 33
LDAP_RESULT_INVALID_DN_SYNTAX = 34
LDAP_RESULT_IS_LEAF = 35
LDAP_RESULT_ALIAS_DEREFERENCING_PROBLEM = 36
LDAP_RESULT_INAPPROPRIATE_AUTHENTICATION = 48
LDAP_RESULT_INVALID_CREDENTIALS = 49
LDAP_RESULT_INSUFFICIENT_ACCESS_RIGHTS = 50
LDAP_RESULT_BUSY = 51
LDAP_RESULT_UNAVAILABLE = 52
LDAP_RESULT_UNWILLING_TO_PERFORM = 53
LDAP_RESULT_LOOP_DETECT = 54
LDAP_RESULT_SORT_CONTROL_MISSING = 60
LDAP_RESULT_OFFSET_RANGE_ERROR = 61
LDAP_RESULT_NAMING_VIOLATION = 64
LDAP_RESULT_OBJECT_CLASS_VIOLATION = 65
LDAP_RESULT_NOT_ALLOWED_ON_NON_LEAF = 66
LDAP_RESULT_NOT_ALLOWED_ON_RDN = 67
LDAP_RESULT_ENTRY_ALREADY_EXISTS = 68
LDAP_RESULT_OBJECT_CLASS_MODS_PROHIBITED = 69
LDAP_RESULT_RESULTS_TOO_LARGE = 70
LDAP_RESULT_AFFECTS_MULTIPLE_DSAS = 71
LDAP_RESULT_VIRTUAL_LIST_VIEW_ERROR_OR_CONTROL_ERROR = 76
LDAP_RESULT_OTHER = 80
LDAP_RESULT_SERVER_DOWN = 81
LDAP_RESULT_LOCAL_ERROR = 82
LDAP_RESULT_ENCODING_ERROR = 83
LDAP_RESULT_DECODING_ERROR = 84
LDAP_RESULT_TIMEOUT = 85
LDAP_RESULT_AUTH_UNKNOWN = 86
LDAP_RESULT_FILTER_ERROR = 87
LDAP_RESULT_USER_CANCELED = 88
LDAP_RESULT_PARAM_ERROR = 89
LDAP_RESULT_NO_MEMORY = 90
LDAP_RESULT_CONNECT_ERROR = 91
LDAP_RESULT_NOT_SUPPORTED = 92
LDAP_RESULT_CONTROL_NOT_FOUND = 93
LDAP_RESULT_NO_RESULTS_RETURNED = 94
LDAP_RESULT_MORE_RESULTS_TO_RETURN = 95
LDAP_RESULT_CLIENT_LOOP = 96
LDAP_RESULT_REFERRAL_LIMIT_EXCEEDED = 97
LDAP_RESULT_INVALID_RESPONSE = 100
LDAP_RESULT_AMBIGUOUS_RESPONSE = 101
LDAP_RESULT_TLS_NOT_SUPPORTED = 112
LDAP_RESULT_INTERMEDIATE_RESPONSE = 113
LDAP_RESULT_UNKNOWN_TYPE = 114
LDAP_RESULT_CANCELED = 118
LDAP_RESULT_NO_SUCH_OPERATION = 119
LDAP_RESULT_TOO_LATE = 120
LDAP_RESULT_CANNOT_CANCEL = 121
LDAP_RESULT_ASSERTION_FAILED = 122
LDAP_RESULT_AUTHORIZATION_DENIED = 123
LDAP_RESULT_SYNC_REFRESH_REQUIRED = 4096

ERROR_NETWORK = 200
ERROR_FILTER_COMPILE = 201
ERROR_FILTER_DECOMPILE = 202
ERROR_DEBUGGING = 203
ERROR_UNEXPECTED_MESSAGE = 204
ERROR_UNEXPECTED_RESPONSE = 205
ERROR_EMPTY_PASSWORD = 206

LDAP_RESULT_CODE_MAP: dict[int, str] = {
    LDAP_RESULT_SUCCESS: "Success",
    LDAP_RESULT_OPERATIONS_ERROR: "Operations Error",
    LDAP_RESULT_PROTOCOL_ERROR: "Protocol Error",
    LDAP_RESULT_TIME_LIMIT_EXCEEDED: "Time Limit Exceeded",
    LDAP_RESULT_SIZE_LIMIT_EXCEEDED: "Size Limit Exceeded",
    LDAP_RESULT_COMPARE_FALSE: "Compare False",
    LDAP_RESULT_COMPARE_TRUE: "Compare True",
    LDAP_RESULT_AUTH_METHOD_NOT_SUPPORTED: "Auth Method Not Supported",
    LDAP_RESULT_STRONG_AUTH_REQUIRED: "Strong Auth Required",
    LDAP_RESULT_REFERRAL: "Referral",
    LDAP_RESULT_ADMIN_LIMIT_EXCEEDED: "Admin Limit Exceeded",
    LDAP_RESULT_UNAVAILABLE_CRITICAL_EXTENSION: "Unavailable Critical Extension",
    LDAP_RESULT_CONFIDENTIALITY_REQUIRED: "Confidentiality Required",
    LDAP_RESULT_SASL_BIND_IN_PROGRESS: "Sasl Bind In Progress",
    LDAP_RESULT_NO_SUCH_ATTRIBUTE: "No Such Attribute",
    LDAP_RESULT_UNDEFINED_ATTRIBUTE_TYPE: "Undefined Attribute Type",
    LDAP_RESULT_INAPPROPRIATE_MATCHING: "Inappropriate Matching",
    LDAP_RESULT_CONSTRAINT_VIOLATION: "Constraint Violation",
    LDAP_RESULT_ATTRIBUTE_OR_VALUE_EXISTS: "Attribute Or Value Exists",
    LDAP_RESULT_INVALID_ATTRIBUTE_SYNTAX: "Invalid Attribute Syntax",
    LDAP_RESULT_NO_SUCH_OBJECT: "No Such Object",
    LDAP_RESULT_ALIAS_PROBLEM: "Alias Problem",
    LDAP_RESULT_INVALID_DN_SYNTAX: "Invalid DN Syntax",
    LDAP_RESULT_IS_LEAF: "Is Leaf",
    LDAP_RESULT_ALIAS_DEREFERENCING_PROBLEM: "Alias Dereferencing Problem",
    LDAP_RESULT_INAPPROPRIATE_AUTHENTICATION: "Inappropriate Authentication",
    LDAP_RESULT_INVALID_CREDENTIALS: "Invalid Credentials",
    LDAP_RESULT_INSUFFICIENT_ACCESS_RIGHTS: "Insufficient Access Rights",
    LDAP_RESULT_BUSY: "Busy",
    LDAP_RESULT_UNAVAILABLE: "Unavailable",
    LDAP_RESULT_UNWILLING_TO_PERFORM: "Unwilling To Perform",
    LDAP_RESULT_LOOP_DETECT: "Loop Detect",
    LDAP_RESULT_SORT_CONTROL_MISSING: "Sort Control Missing",
    LDAP_RESULT_OFFSET_RANGE_ERROR: "Result Offset Range Error",
    LDAP_RESULT_NAMING_VIOLATION: "Naming Violation",
    LDAP_RESULT_OBJECT_CLASS_VIOLATION: "Object Class Violation",
    LDAP_RESULT_RESULTS_TOO_LARGE: "Results Too Large",
    LDAP_RESULT_NOT_ALLOWED_ON_NON_LEAF: "Not Allowed On Non Leaf",
    LDAP_RESULT_NOT_ALLOWED_ON_RDN: "Not Allowed On RDN",
    LDAP_RESULT_ENTRY_ALREADY_EXISTS: "Entry Already Exists",
    LDAP_RESULT_OBJECT_CLASS_MODS_PROHIBITED: "Object Class Mods Prohibited",
    LDAP_RESULT_AFFECTS_MULTIPLE_DSAS: "Affects Multiple DSAs",
    LDAP_RESULT_VIRTUAL_LIST_VIEW_ERROR_OR_CONTROL_ERROR: (
        "Failed because of a problem related to the virtual list view"
    ),
    LDAP_RESULT_OTHER: "Other",
    LDAP_RESULT_SERVER_DOWN: "Cannot establish a connection",
    LDAP_RESULT_LOCAL_ERROR: "An error occurred",
    LDAP_RESULT_ENCODING_ERROR: "LDAP encountered an error while encoding",
    LDAP_RESULT_DECODING_ERROR: "LDAP encountered an error while decoding",
    LDAP_RESULT_TIMEOUT: "LDAP timeout while waiting for a response from the server",
    LDAP_RESULT_AUTH_UNKNOWN: "The auth method requested in a bind request is unknown",
    LDAP_RESULT_FILTER_ERROR: "An error occurred while encoding the given search filter",
    LDAP_RESULT_USER_CANCELED: "The user canceled the operation",
    LDAP_RESULT_PARAM_ERROR: "An invalid parameter was specified",
    LDAP_RESULT_NO_MEMORY: "Out of memory error",
    LDAP_RESULT_CONNECT_ERROR: "A connection to the server could not be established",
    LDAP_RESULT_NOT_SUPPORTED: "An attempt has been made to use a feature not supported LDAP",
    LDAP_RESULT_CONTROL_NOT_FOUND: (
        "The controls required to perform the requested operation were not found"
    ),
    LDAP_RESULT_NO_RESULTS_RETURNED: "No results were returned from the server",
    LDAP_RESULT_MORE_RESULTS_TO_RETURN: "There are more results in the chain of results",
    LDAP_RESULT_CLIENT_LOOP: "A loop has been detected. For example when following referrals",
    LDAP_RESULT_REFERRAL_LIMIT_EXCEEDED: "The referral hop limit has been exceeded",
    LDAP_RESULT_CANCELED: "Operation was canceled",
    LDAP_RESULT_NO_SUCH_OPERATION: (
        "Server has no knowledge of the operation requested for cancellation"
    ),
    LDAP_RESULT_TOO_LATE: "Too late to cancel the outstanding operation",
    LDAP_RESULT_CANNOT_CANCEL: (
        "The identified operation does not support cancellation or the cancel "
        "operation cannot be performed"
    ),
    LDAP_RESULT_ASSERTION_FAILED: (
        "An assertion control given in the LDAP operation evaluated to false "
        "causing the operation to not be performed"
    ),
    LDAP_RESULT_SYNC_REFRESH_REQUIRED: "Refresh Required",
    LDAP_RESULT_INVALID_RESPONSE: "Invalid Response",
    LDAP_RESULT_AMBIGUOUS_RESPONSE: "Ambiguous Response",
    LDAP_RESULT_TLS_NOT_SUPPORTED: "Tls Not Supported",
    LDAP_RESULT_INTERMEDIATE_RESPONSE: "Intermediate Response",
    LDAP_RESULT_UNKNOWN_TYPE: "Unknown Type",
    LDAP_RESULT_AUTHORIZATION_DENIED: "Authorization Denied",
    ERROR_NETWORK: "Network Error",
    ERROR_FILTER_COMPILE: "Filter Compile Error",
    ERROR_FILTER_DECOMPILE: "Filter Decompile Error",
    ERROR_DEBUGGING: "Debugging Error",
    ERROR_UNEXPECTED_MESSAGE: "Unexpected Message",
    ERROR_UNEXPECTED_RESPONSE: "Unexpected Response",
    ERROR_EMPTY_PASSWORD: "Empty password not allowed by the client",
}


class LDAPError(Exception):
    """An LDAP failure: a result code, a message and, if known, the matched DN and packet."""

    def __init__(
        self,
        result_code: int,
        message: Any,
        matched_dn: str = "",
        packet: Packet | None = None,
    ) -> None:
        self.result_code = int(result_code)
        self.message = str(message)
        self.matched_dn = matched_dn
        self.packet = packet
        super().__init__(self.result_code, self.message)

    @property
    def description(self) -> str:
        """The human readable name of the result code."""
        return LDAP_RESULT_CODE_MAP.get(self.result_code, "")

    def __str__(self) -> str:
        return f'LDAP Result Code {self.result_code} "{self.description}": {self.message}'


def _int_value(packet: Packet) -> int:
    if isinstance(packet.value, int) and not isinstance(packet.value, bool):
        return packet.value
    return int.from_bytes(packet.data, "big", signed=True)


def _str_value(packet: Packet) -> str:
    if isinstance(packet.value, str):
        return packet.value
    return bytes(packet.data).decode("utf-8", "surrogateescape")


def get_ldap_error(packet: Packet | None) -> LDAPError | None:
    """Return the error described by an LDAPResult message, or None on success."""
    if packet is None:
        return LDAPError(ERROR_UNEXPECTED_RESPONSE, "Empty packet")

    if len(packet.children) >= 2:
        response = packet.children[1]
        if response is None:
            return LDAPError(ERROR_UNEXPECTED_RESPONSE, "Empty response in packet", packet=packet)
        if (
            response.class_type == ClassType.APPLICATION
            and response.tag_type == TagType.CONSTRUCTED
            and len(response.children) >= 3
        ):
            result_code = _int_value(response.children[0]) & 0xFFFF
            if result_code == LDAP_RESULT_SUCCESS:
                return None
            return LDAPError(
                result_code,
                _str_value(response.children[2]),
                matched_dn=_str_value(response.children[1]),
                packet=packet,
            )

    return LDAPError(ERROR_NETWORK, "Invalid packet format", packet=packet)


def check_result(packet: Packet | None) -> None:
    """Raise the error described by an LDAPResult message, if any."""
    error = get_ldap_error(packet)
    if error is not None:
        raise error


def new_error(result_code: int, message: Any) -> LDAPError:
    """Build an LDAPError; an exception given as message becomes its cause."""
    error = LDAPError(result_code, message)
    if isinstance(message, BaseException):
        error.__cause__ = message
    return error


def is_error_any_of(err: BaseException | None, *codes: int) -> bool:
    """Tell whether ``err`` is an LDAPError with one of the given result codes."""
    return isinstance(err, LDAPError) and err.result_code in codes


def is_error_with_code(err: BaseException | None, code: int) -> bool:
    """Tell whether ``err`` is an LDAPError with the given result code."""
    return is_error_any_of(err, code)