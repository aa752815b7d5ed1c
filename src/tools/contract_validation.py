class BaseType:

    def __init__(self):
        raise Exception("Cannot instantiate")

    @staticmethod
    def validate():
        raise NotImplementedError("Subclasses should implement this!")


class IntegerType(BaseType):

    @staticmethod
    def validate(value):
        # bool is a subclass of int but never a valid wire integer
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError("Value must be an integer.")


class StringType(BaseType):

    @staticmethod
    def validate(value):
        if not isinstance(value, str):
            raise TypeError("Value must be a string.")


class LiteralType(BaseType):

    def __init__(self, expected):
        self.expected = expected

    def validate(self, value):
        if value != self.expected:
            raise TypeError(f"Value must be {self.expected!r}.")


class OptionalType(BaseType):

    def __init__(self, item_type):
        self.item_type = item_type

    def validate(self, value):
        if value is not None:
            self.item_type.validate(value)


def validate_contract(contract, data, strict=False):
    """
    Check ``data`` against ``contract``.

    Raises KeyError for a missing required key, TypeError for a type
    mismatch and, when ``strict`` is set, ValueError for keys the contract
    does not declare.
    """
    if not isinstance(data, dict):
        raise TypeError("Message must be a JSON object.")

    for key, value in contract.items():
        if key not in data:
            if isinstance(value, OptionalType):
                continue
            raise KeyError(key)
        if isinstance(value, dict):
            validate_contract(value, data[key], strict=strict)
        else:
            value.validate(data[key])

    if strict:
        unexpected = sorted(set(data) - set(contract))
        if unexpected:
            raise ValueError(f"Unexpected field(s): {', '.join(unexpected)}")


class ContractValidationError(Exception):
    """Exception raised when contract validation fails."""

    def __init__(self, error_type: str, message: str):
        self.error_type = error_type
        self.message = message
        super().__init__(message)


def check_contract(contract, data, strict=True):
    """
    Validate a contract and translate failures into ContractValidationError.

    Args:
        contract: The contract schema to validate against
        data: The data to validate
        strict: Reject keys the contract does not declare

    Raises:
        ContractValidationError: error_type is one of
            "missing_field", "type_mismatch" or "unexpected_field"
    """
    try:
        validate_contract(contract, data, strict=strict)
    except KeyError as e:
        raise ContractValidationError(
            "missing_field", f"Missing required field: {e.args[0]}"
        ) from e
    except TypeError as e:
        raise ContractValidationError("type_mismatch", f"Invalid field type: {e}") from e
    except ValueError as e:
        raise ContractValidationError("unexpected_field", str(e)) from e
