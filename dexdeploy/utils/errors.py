class DexDeployError(Exception):
    """
    Base class for every error raised by the deployment tooling.
    """


class ChainClientError(DexDeployError):
    """
    The chain client could not complete a request (transport failure,
    malformed response, unknown account).
    """


class Timeout(ChainClientError):
    """
    A remote call did not complete within its upper bound.
    """

    def __init__(self, operation, seconds):
        self.operation = operation
        self.seconds = seconds
        super().__init__(f"{operation} timed out after {seconds}s")


class SchemaError(DexDeployError):
    """
    A contract call payload or response does not match the method schema.
    """


class TransactionFailed(DexDeployError):
    """
    A transaction finalized with `success == False`.
    """

    def __init__(self, description, error_code=None):
        self.description = description
        self.error_code = error_code
        super().__init__(f"{description} failed (error code: {error_code})")


class LedgerError(DexDeployError):
    """
    The deployment ledger rejected a write, e.g. a record that would
    overwrite an existing address without a forced step.
    """


###################
# Migration graph #
###################


class CycleError(DexDeployError):
    def __init__(self, tags):
        self.tags = list(tags)
        super().__init__(f"Dependency cycle between migration steps: {', '.join(self.tags)}")


class UnknownDependencyError(DexDeployError):
    def __init__(self, tag, dependency):
        self.tag = tag
        self.dependency = dependency
        super().__init__(f"Migration step `{tag}` depends on undeclared step `{dependency}`")


class StepExecutionError(DexDeployError):
    """
    Error representing an exception that occurs while executing a migration step.
    Provides the `tag` of the failed step, which can be used to resume
    execution later on.
    """

    def __init__(self, tag, message="An error occurred while executing migration step"):
        self.tag = tag
        self.message = message
        super().__init__(self.message)

    def __str__(self):
        return f"{self.message}. Tag of failed migration step: {self.tag}"


##############
# Deployment #
##############


class DeploymentVerificationError(DexDeployError):
    def __init__(self, address, expected_code_hash, actual_code_hash):
        self.address = address
        self.expected_code_hash = expected_code_hash
        self.actual_code_hash = actual_code_hash
        super().__init__(
            f"Instance at {address} failed verification: "
            f"expected code hash {expected_code_hash}, found {actual_code_hash}"
        )


class PartiallyConfigured(DexDeployError):
    """
    Warning value: the instance is deployed and verified, but a follow-up
    configuration call failed. It runs under default parameters until the
    next migration run repairs it.
    """

    def __init__(self, logical_name, address, reason):
        self.logical_name = logical_name
        self.address = address
        self.reason = reason
        super().__init__(f"{logical_name} ({address}) is partially configured: {reason}")


###########
# Upgrade #
###########


class CodeInstallRejected(DexDeployError):
    def __init__(self, contract_class, variant_type, error_code):
        self.contract_class = contract_class
        self.variant_type = variant_type
        self.error_code = error_code
        super().__init__(
            f"Installing code for {contract_class} (variant {variant_type}) was rejected: {error_code}"
        )


class UpgradeRejected(DexDeployError):
    """
    The instance stays on its old code. Installed code is left in place,
    so the trigger can be retried.
    """

    def __init__(self, contract_class, selector, error_code):
        self.contract_class = contract_class
        self.selector = selector
        self.error_code = error_code
        super().__init__(f"Upgrade of {contract_class} {selector} was rejected: {error_code}")


class DataPreservationError(DexDeployError):
    def __init__(self, address, changed):
        self.address = address
        self.changed = changed
        fields = ", ".join(sorted(changed))
        super().__init__(f"Upgrade of {address} did not preserve: {fields}")


########
# Scan #
########


class VerificationFailed(DexDeployError):
    def __init__(self, address, reason):
        self.address = address
        self.reason = reason
        super().__init__(f"Verification of {address} failed: {reason}")
