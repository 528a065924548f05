"""ODE solver wrappers around Diffrax for jaxthermo.

Provides consistent interfaces for non-stiff (background) and stiff
(recombination) ODE integration. Unlike a bare diffeqsolve call, the
stiff wrapper runs with throw=False and reports failure through
check_solution(), so the caller can attach the offending redshift range.

References:
    Diffrax docs: https://docs.kidger.site/diffrax/
    DISCO-EB: thermodynamics_recfast.py (stiff RECFAST solve, throw=False)
"""

import diffrax
import jax.numpy as jnp
from jaxtyping import Array, Float


def solve_nonstiff(
    rhs_fn,
    t0: float,
    t1: float,
    y0: Float[Array, "D"],
    saveat: diffrax.SaveAt,
    args=None,
    rtol: float = 1e-10,
    atol: float = 1e-13,
    max_steps: int = 16384,
    throw: bool = True,
):
    """Solve a non-stiff ODE system using Tsit5 (explicit RK4/5).

    Used for background integration (Friedmann equation is not stiff) and
    for the baryon temperature after reionization. With throw=False a
    failed solve is reported through check_solution() instead of raising.

    Args:
        rhs_fn: callable (t, y, args) -> dy, the ODE right-hand side
        t0: initial time
        t1: final time
        y0: initial state vector
        saveat: diffrax SaveAt (e.g., SaveAt(ts=time_grid))
        args: additional arguments passed to rhs_fn
        rtol: relative tolerance
        atol: absolute tolerance
        max_steps: maximum number of solver steps
        throw: raise inside diffrax on failure

    Returns:
        Diffrax solution object with .ys (saved states) and .ts (saved times)
    """
    return diffrax.diffeqsolve(
        diffrax.ODETerm(rhs_fn),
        solver=diffrax.Tsit5(),
        t0=t0,
        t1=t1,
        dt0=None,
        y0=y0,
        saveat=saveat,
        stepsize_controller=diffrax.PIDController(rtol=rtol, atol=atol),
        max_steps=max_steps,
        args=args,
        throw=throw,
    )


def solve_stiff(
    rhs_fn,
    t0: float,
    t1: float,
    y0: Float[Array, "D"],
    saveat: diffrax.SaveAt,
    args=None,
    rtol: float = 1e-6,
    atol: float = 1e-10,
    max_steps: int = 65536,
    dt0=None,
    dtmin=None,
    dtmax=None,
):
    """Solve a stiff ODE system using Kvaerno5 (implicit ESDIRK).

    Used for the RECFAST recombination system. The step size is capped
    at dtmax; if the controller would need a step below dtmin, the solve
    stops with an unsuccessful result instead of forcing the step.

    Args:
        rhs_fn: callable (t, y, args) -> dy
        t0: initial time
        t1: final time
        y0: initial state vector
        saveat: diffrax SaveAt
        args: additional arguments passed to rhs_fn
        rtol: relative tolerance
        atol: absolute tolerance
        max_steps: maximum number of solver steps
        dt0: initial step size (None for auto)
        dtmin: step-size floor (None for no floor)
        dtmax: step-size ceiling (None for no ceiling)

    Returns:
        Diffrax solution object; inspect with check_solution()
    """
    controller = diffrax.PIDController(
        rtol=rtol,
        atol=atol,
        dtmin=dtmin,
        dtmax=dtmax,
        force_dtmin=dtmin is None,
    )
    return diffrax.diffeqsolve(
        diffrax.ODETerm(rhs_fn),
        solver=diffrax.Kvaerno5(),
        t0=t0,
        t1=t1,
        dt0=dt0,
        y0=y0,
        saveat=saveat,
        stepsize_controller=controller,
        max_steps=max_steps,
        args=args,
        throw=False,
    )


def check_solution(sol) -> bool:
    """True if the solve succeeded and every saved state is finite."""
    ok = bool(sol.result == diffrax.RESULTS.successful)
    return ok and bool(jnp.all(jnp.isfinite(sol.ys)))
