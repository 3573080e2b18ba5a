"""Exception raised for malformed grids, chains and inputs.

Since:
    Version 0.1.0
"""


class ConfigurationError(ValueError):
    """Raised when a grid, chain or model description is malformed.

    Detected at setup time, before any iteration is attempted. All problems
    found in one pass are reported together.

    Attributes:
        issues: One message per problem.

    Examples:
        Listing every problem with a grid::

            try:
                grid = StateGrid({"a": [0.0, 0.0, 1.0]})
            except ConfigurationError as e:
                for issue in e.issues:
                    print(issue)
    """

    def __init__(self, issues: list[str]) -> None:
        self.issues = list(issues)
        noun = "problem" if len(self.issues) == 1 else "problems"
        details = "; ".join(self.issues)
        super().__init__(f"Invalid setup ({len(self.issues)} {noun}): {details}")
