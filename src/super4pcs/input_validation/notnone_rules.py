"""Not-None rules.

Decorators checking how many keyword arguments of a group are set. For
example, a matcher may be seeded either with an integer or with a generator,
but not with both:
```python
@no_more_than_one(["seed", "generator"])
def fit(*, seed=None, generator=None):
    pass


fit(seed=1)  # OK
fit()  # OK
fit(seed=1, generator=torch.Generator())  # InputStructureError
```

Decorators already implemented:

- `one_and_only_one` : one and only one of the parameters must be not None
- `no_more_than_one` : no more than one of the parameters must be not None
"""
from functools import wraps

from ..errors import InputStructureError


def generator_notnone_rule(rule):
    """Not-None rules decorator generator.

    Parameters
    ----------
    rule
        A function receiving the number of keyword arguments of the group
        that are not None, and raising if this number is not admissible.

    Returns
    -------
    Callable
        A decorator factory, parametrized with the list of the parameters of
        the group.
    """

    def ruler(parameters):
        def decorator(func):
            @wraps(func)
            def wrapper(*args, **kwargs):
                not_none = sum(
                    1
                    for key, value in kwargs.items()
                    if key in parameters and value is not None
                )
                rule(not_none, parameters)
                return func(*args, **kwargs)

            # Copy annotations (if not, beartype does not work)
            wrapper.__annotations__ = func.__annotations__
            return wrapper

        return decorator

    return ruler


def rule_one_and_only_one(not_none: int, parameters: list[str]) -> None:
    """Rule that checks that one and only one of the parameters is not None."""
    if not_none != 1:
        raise InputStructureError(
            f"One and only one of the parameters {parameters} must be"
            + " not None and they must be passed as keyword arguments"
        )


def rule_no_more_than_one(not_none: int, parameters: list[str]) -> None:
    """Rule that checks that no more than one of the parameters is not None."""
    if not_none > 1:
        raise InputStructureError(
            f"No more than one of the parameters {parameters} must be"
            + " not None and they must be passed as keyword arguments"
        )


def one_and_only_one(parameters):
    """Checker for exactly one not None parameter.

    Raises
    ------
    InputStructureError
        if zero or more than one of the parameters are not None
    """
    return generator_notnone_rule(rule_one_and_only_one)(parameters)


def no_more_than_one(parameters):
    """Checker for at most one not None parameter.

    Raises
    ------
    InputStructureError
        if more than one of the parameters are not None
    """
    return generator_notnone_rule(rule_no_more_than_one)(parameters)
