"""Error types and input validation for the simulation service."""

from typing import Any, Dict, Mapping, Optional

SIMULATION_NOT_FOUND = "Simulation not found."
SERVICE_NOT_FOUND = "Service not found."
SERVICE_LEVEL_NOT_FOUND = "Service level not found."
FORM_QUESTIONS_NOT_FOUND = "Form Questions not found."
SIMULATION_UPDATED = "Simulation updated."
SIMULATION_ENDED = "Simulation has already ended. Please try again."
SIMULATION_NOT_ENDED = "Simulation has not ended yet."
SIMULATION_COMPLETED = "Simulation completed."


class SimulationError(Exception):
    """Base class for simulation service errors."""
    pass


class NotFoundError(SimulationError):
    """Raised when a simulation or service level id does not resolve."""

    def __init__(self, message: str, *, resource: str, resource_id: Optional[str] = None):
        super().__init__(message)
        self.resource = resource
        self.resource_id = resource_id


class InvalidStateError(SimulationError):
    """Raised for mutations that the simulation's lifecycle no longer allows."""
    pass


class FormAnswersValidationError(SimulationError):
    """Raised when submitted form answers are not a section -> question -> answer mapping."""
    pass


def validate_form_answers(data: Any) -> Dict[str, Dict[str, str]]:
    """Validate a ``{section: {question_no: answer}}`` mapping of strings.

    Returns a plain-dict copy. Raises FormAnswersValidationError if validation fails.
    """
    if not isinstance(data, Mapping):
        raise FormAnswersValidationError(
            f"Form answers must be an object, got {type(data).__name__}"
        )

    validated: Dict[str, Dict[str, str]] = {}
    for section, questions in data.items():
        if not isinstance(section, str):
            raise FormAnswersValidationError("Section names must be strings")
        if not isinstance(questions, Mapping):
            raise FormAnswersValidationError(
                f"Section {section!r} must map question numbers to answers"
            )
        answers: Dict[str, str] = {}
        for question_no, answer in questions.items():
            if not isinstance(question_no, str) or not isinstance(answer, str):
                raise FormAnswersValidationError(
                    f"Answer for {section!r}/{question_no!r} has wrong type. Expected str, "
                    f"got {type(answer).__name__}"
                )
            answers[question_no] = answer
        validated[section] = answers
    return validated
