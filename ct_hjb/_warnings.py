"""Custom warning classes for the ct_hjb package.

These warning classes allow users to programmatically filter, suppress,
or capture warnings using Python's standard ``warnings`` module.

Example:
    Silence the eigenvalue check while sweeping over parameters::

        import warnings
        from ct_hjb._warnings import IllConditionedGeneratorWarning

        warnings.filterwarnings("ignore", category=IllConditionedGeneratorWarning)
"""


class CtHjbWarning(UserWarning):
    """Base class for all ct_hjb warnings."""


class IllConditionedGeneratorWarning(CtHjbWarning):
    """The principal eigenvalue of a generator is not numerically zero.

    Raised by the eigenvector stationary-distribution method. It usually
    signals a reducible chain or a generator assembled from a policy that has
    not converged.
    """


class ConvergenceWarning(CtHjbWarning):
    """An iterative routine stopped without meeting its tolerance.

    Only emitted where the caller explicitly asked for failures to be
    reported instead of raised.
    """
