from typing import Generic, TypeVar, Optional, Callable, Any, Dict, Union
from http import HTTPStatus

from fastapi.responses import JSONResponse

T = TypeVar('T')  # Generic type variable
U = TypeVar('U')  # Additional type variable for chained operations

class Result(Generic[T]):
    """
    A generic result class that represents the outcome of an operation.

    Successful results carry data; failed results carry a short error title
    (``error``) and a human readable explanation (``message``). Route handlers
    turn failed results into the ``{error, message}`` JSON envelope using the
    status code stored on the result.

    Attributes:
        success (bool): Indicates if the operation was successful
        data (Optional[T]): The result data (only present when success is True)
        error (Optional[str]): Error title (only present when success is False)
        message (Optional[str]): Error explanation shown to API clients
        status_code (HTTPStatus): HTTP status code (default: 200 for success, 400 for failure)
    """
    def __init__(
        self,
        success: bool,
        data: Optional[T] = None,
        error: Optional[str] = None,
        status_code: Optional[Union[int, HTTPStatus]] = None,
        message: Optional[str] = None
    ):
        """
        Initialize a Result object.

        Args:
            success (bool): Whether the operation succeeded
            data (Optional[T], optional): The data returned by a successful operation. Defaults to None.
            error (Optional[str], optional): Error title for a failed operation. Defaults to None.
            status_code (Optional[Union[int, HTTPStatus]], optional): HTTP status code.
                Defaults to 200 for success, 400 for failure.
            message (Optional[str], optional): Error explanation. Defaults to the error title.
        """
        self.success = success
        self.data = data
        self.error = error
        self.message = message if message is not None else error

        # Set default status code based on success/failure if not provided
        if status_code is None:
            self.status_code = HTTPStatus.OK if success else HTTPStatus.BAD_REQUEST
        else:
            if isinstance(status_code, int):
                self.status_code = HTTPStatus(status_code)
            else:
                self.status_code = status_code

    @classmethod
    def ok(cls, data: T, status_code: Optional[Union[int, HTTPStatus]] = HTTPStatus.OK) -> "Result[T]":
        """
        Create a successful Result with the provided data.

        Args:
            data (T): The data to be wrapped in the Result
            status_code (Optional[Union[int, HTTPStatus]], optional): HTTP status code. Defaults to 200 OK.

        Returns:
            Result[T]: A successful Result containing the provided data
        """
        return cls(success=True, data=data, status_code=status_code)

    @classmethod
    def fail(
        cls,
        error: str,
        message: Optional[str] = None,
        status_code: Optional[Union[int, HTTPStatus]] = HTTPStatus.BAD_REQUEST
    ) -> "Result[T]":
        """
        Create a failed Result with the provided error title and message.

        Args:
            error (str): Short error title
            message (Optional[str], optional): Explanation for the client. Defaults to the title.
            status_code (Optional[Union[int, HTTPStatus]], optional): HTTP status code. Defaults to 400 BAD_REQUEST.

        Returns:
            Result[T]: A failed Result containing the error
        """
        return cls(success=False, error=error, message=message, status_code=status_code)

    @classmethod
    def not_found(cls, message: str = "The requested file does not exist") -> "Result[T]":
        """
        Create a failed Result with NOT_FOUND status code.

        Args:
            message (str, optional): Explanation for the client.

        Returns:
            Result[T]: A failed Result with 404 status code
        """
        return cls(success=False, error="File not found", message=message, status_code=HTTPStatus.NOT_FOUND)

    @classmethod
    def invalid_input(cls, error: str = "Invalid input data", message: Optional[str] = None) -> "Result[T]":
        """
        Create a failed Result with BAD_REQUEST status code.

        Args:
            error (str, optional): Error title. Defaults to "Invalid input data".
            message (Optional[str], optional): Explanation for the client.

        Returns:
            Result[T]: A failed Result with 400 status code
        """
        return cls(success=False, error=error, message=message, status_code=HTTPStatus.BAD_REQUEST)

    @classmethod
    def server_error(cls, message: str = "An unexpected error occurred") -> "Result[T]":
        """
        Create a failed Result with INTERNAL_SERVER_ERROR status code.

        The message must stay generic; callers log the underlying cause
        themselves instead of passing it through.

        Args:
            message (str, optional): Generic explanation for the client.

        Returns:
            Result[T]: A failed Result with 500 status code
        """
        return cls(
            success=False,
            error="Internal server error",
            message=message,
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR
        )

    def is_success(self) -> bool:
        """
        Check if the Result represents a successful operation.

        Returns:
            bool: True if the Result is successful, False otherwise
        """
        return self.success

    def is_failure(self) -> bool:
        """
        Check if the Result represents a failed operation.

        Returns:
            bool: True if the Result is a failure, False otherwise
        """
        return not self.success

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert a failed Result to the API error envelope.

        Returns:
            Dict[str, Any]: Dictionary with ``error`` and ``message`` keys
        """
        return {"error": self.error, "message": self.message}

    def to_error_response(self) -> JSONResponse:
        """
        Build the JSON error response for a failed Result.

        Returns:
            JSONResponse: Envelope with the Result's status code
        """
        return JSONResponse(status_code=self.status_code.value, content=self.to_dict())

    def and_then(self, fn: Callable[[T], "Result[U]"]) -> "Result[U]":
        """
        Chain operations that return Result objects.

        If this Result is a failure, it short-circuits and returns a failure
        with the same error, message and status code. If it's a success, it
        applies the function to the data and returns the new Result.

        Args:
            fn (Callable[[T], Result[U]]): Function that takes the success data and returns a new Result

        Returns:
            Result[U]: Either the same failure or the new Result from the function
        """
        if not self.is_success():
            return Result.fail(self.error or "", message=self.message, status_code=self.status_code)  # type: ignore
        return fn(self.data)  # type: ignore
