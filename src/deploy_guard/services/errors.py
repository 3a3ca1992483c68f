from fastapi import status


class MultisigError(Exception):
    error_code = "MULTISIG_ERROR"
    title = "Multisig Error"
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str, resource_id: str | None = None):
        super().__init__(detail)
        self.detail = detail
        self.resource_id = resource_id


class InvalidPolicyError(MultisigError):
    error_code = "INVALID_POLICY"
    title = "Invalid Policy"


class InvalidProposalError(MultisigError):
    error_code = "INVALID_PROPOSAL"
    title = "Invalid Proposal"


class NotFoundError(MultisigError):
    error_code = "NOT_FOUND"
    title = "Not Found"
    http_status = status.HTTP_404_NOT_FOUND


class UnauthorizedSignerError(MultisigError):
    error_code = "UNAUTHORIZED_SIGNER"
    title = "Unauthorized Signer"
    http_status = status.HTTP_403_FORBIDDEN


class DuplicateSignatureError(MultisigError):
    error_code = "DUPLICATE_SIGNATURE"
    title = "Duplicate Signature"
    http_status = status.HTTP_409_CONFLICT


class InvalidSignatureError(MultisigError):
    error_code = "INVALID_SIGNATURE"
    title = "Invalid Signature"


class ProposalTerminalError(MultisigError):
    error_code = "PROPOSAL_TERMINAL"
    title = "Proposal Closed"
    http_status = status.HTTP_409_CONFLICT


class NotApprovedError(MultisigError):
    error_code = "NOT_APPROVED"
    title = "Proposal Not Approved"
    http_status = status.HTTP_409_CONFLICT


class ProposalExpiredError(MultisigError):
    error_code = "PROPOSAL_EXPIRED"
    title = "Proposal Expired"
    http_status = status.HTTP_410_GONE


class AlreadyExecutedError(MultisigError):
    error_code = "ALREADY_EXECUTED"
    title = "Proposal Already Executed"
    http_status = status.HTTP_409_CONFLICT


class ExecutionFailedError(MultisigError):
    error_code = "EXECUTION_FAILED"
    title = "Deployment Failed"
    http_status = status.HTTP_502_BAD_GATEWAY

    def __init__(self, detail: str, resource_id: str | None = None, outcome: str = "failed"):
        super().__init__(detail, resource_id)
        self.outcome = outcome


class ConcurrentModificationError(MultisigError):
    error_code = "CONCURRENT_MODIFICATION"
    title = "Concurrent Modification"
    http_status = status.HTTP_409_CONFLICT


class RegistryUnavailableError(Exception):
    """Persistence layer unreachable; not part of the domain taxonomy."""

    error_code = "REGISTRY_UNAVAILABLE"

    def __init__(self, detail: str, upstream_status: int | None = None):
        super().__init__(detail)
        self.detail = detail
        self.upstream_status = upstream_status


class VersionConflict(Exception):
    def __init__(self, record_id: str, expected_version: int, actual_version: int | None):
        super().__init__(
            f"version conflict on {record_id}: expected {expected_version}, found {actual_version}"
        )
        self.record_id = record_id
        self.expected_version = expected_version
        self.actual_version = actual_version
