"""Structured layouts for every flat vector the kernel indexes into.

The sampler hands the kernel one flat unconstrained vector, and the
decov construction itself works on further flat vectors (``z_b``,
``theta_L``, ``z_T``, ``rho``, ``zeta``).  Instead of advancing
offset counters at each call site, all offsets are computed **once**
from the term sizes and group counts and exposed as named slices:

* :class:`FactorPartition`: how one grouping factor's coefficients
  are split contiguously across submodels 1, 2, 3 (the ``k_shift``
  offsets) and the local↔global index conversion.
* :class:`DecovLayout` / :class:`DecovTermLayout`: per-term slices
  into ``z_b``, ``theta_L``, ``z_T``, ``rho`` and ``zeta``.
* :class:`ParameterLayout` / :class:`ParameterSite`: the ordered
  parameter sites of the model, the unconstrained↔constrained maps
  (numpyro bijections) and the log-absolute-Jacobian.

Parameter order
~~~~~~~~~~~~~~~
``gamma_m``, ``z_beta_m`` (all submodels), then the covariance block
(decov: ``z_b``, ``z_T``, ``rho``, ``zeta``, ``tau``; lkj, per factor
*f*: ``b_sd_f``, ``z_b_mat_f``, ``b_cholesky_f``), then
``aux_unscaled_m``, then the shrinkage latents ``global_m``,
``local_m``, ``mix_m``, ``ool_m``, ``caux_m``.  Submodels and factors
are numbered from 1.  Sites of size zero are omitted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from math import prod
from typing import TYPE_CHECKING, Any

import jax.numpy as jnp
import numpy as np
from numpyro.distributions import constraints
from numpyro.distributions.transforms import biject_to
from typing_extensions import Self

from .priors import DecovPrior, coefficient_latent_sites

if TYPE_CHECKING:
    from .data import MvmerData

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------ #
# Grouping-factor partition
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class FactorPartition:
    """Contiguous split of one grouping factor's coefficients across submodels.

    Submodel *m* (0-based) owns global coefficient indices
    ``offsets[m] .. offsets[m] + sizes[m] - 1``.  ``offsets[m]`` is
    the number of coefficients contributed by all earlier submodels.

    Attributes:
        sizes: Coefficient count per submodel (0 when unused).
    """

    sizes: tuple[int, ...]

    @property
    def offsets(self) -> tuple[int, ...]:
        out = []
        running = 0
        for size in self.sizes:
            out.append(running)
            running += size
        return tuple(out)

    @property
    def total(self) -> int:
        """Total coefficients of the factor (``bK``)."""
        return sum(self.sizes)

    def slice(self, m: int) -> slice:
        start = self.offsets[m]
        return slice(start, start + self.sizes[m])

    def to_local(self, m: int, global_index: int) -> int:
        """Column of submodel *m*'s design for a global coefficient index."""
        local = global_index - self.offsets[m]
        if not 0 <= local < self.sizes[m]:
            msg = (
                f"Global index {global_index} is outside submodel {m + 1}'s "
                f"range {self.slice(m).start}..{self.slice(m).stop - 1}."
            )
            raise IndexError(msg)
        return local

    def to_global(self, m: int, local_index: int) -> int:
        if not 0 <= local_index < self.sizes[m]:
            msg = f"Local index {local_index} out of range for submodel {m + 1}."
            raise IndexError(msg)
        return local_index + self.offsets[m]


# ------------------------------------------------------------------ #
# Decov offsets
# ------------------------------------------------------------------ #


def _span(start: int, length: int) -> slice:
    return slice(start, start + length)


@dataclass(frozen=True)
class DecovTermLayout:
    """Slices of one decov term into the shared flat vectors.

    A term with ``p`` coefficients and ``levels`` groups owns
    ``p * levels`` entries of ``z_b`` (level-major: the ``p`` entries
    of each level are contiguous) and ``p + C(p, 2)`` entries of
    ``theta_L``.  Terms with ``p > 1`` also own ``p - 1`` entries of
    ``rho``, ``p`` of ``zeta`` and ``C(p, 2) - 1`` of ``z_T``.
    """

    index: int
    p: int
    levels: int
    z_b: slice
    theta_L: slice
    z_T: slice
    rho: slice
    zeta: slice


@dataclass(frozen=True)
class DecovLayout:
    """Per-term offsets for the decov covariance construction."""

    terms: tuple[DecovTermLayout, ...]

    @classmethod
    def from_terms(cls, p: tuple[int, ...], levels: tuple[int, ...]) -> Self:
        if len(p) != len(levels):
            msg = f"Got {len(p)} term sizes but {len(levels)} group counts."
            raise ValueError(msg)
        terms = []
        z_b = theta = z_T = rho = zeta = 0
        for i, (p_i, l_i) in enumerate(zip(p, levels, strict=True)):
            len_theta = p_i + p_i * (p_i - 1) // 2
            len_z_T = p_i * (p_i - 1) // 2 - 1 if p_i > 2 else 0
            len_rho = p_i - 1 if p_i > 1 else 0
            len_zeta = p_i if p_i > 1 else 0
            terms.append(
                DecovTermLayout(
                    index=i,
                    p=p_i,
                    levels=l_i,
                    z_b=_span(z_b, p_i * l_i),
                    theta_L=_span(theta, len_theta),
                    z_T=_span(z_T, len_z_T),
                    rho=_span(rho, len_rho),
                    zeta=_span(zeta, len_zeta),
                )
            )
            z_b += p_i * l_i
            theta += len_theta
            z_T += len_z_T
            rho += len_rho
            zeta += len_zeta
        return cls(terms=tuple(terms))

    def _end(self, attr: str) -> int:
        return getattr(self.terms[-1], attr).stop if self.terms else 0

    @property
    def q(self) -> int:
        """Length of ``z_b``: ``Σ p_i l_i``."""
        return self._end("z_b")

    @property
    def len_theta_L(self) -> int:
        return self._end("theta_L")

    @property
    def len_z_T(self) -> int:
        return self._end("z_T")

    @property
    def len_rho(self) -> int:
        return self._end("rho")

    @property
    def len_concentration(self) -> int:
        return self._end("zeta")

    @property
    def p(self) -> tuple[int, ...]:
        return tuple(term.p for term in self.terms)

    @property
    def n_terms(self) -> int:
        return len(self.terms)


# ------------------------------------------------------------------ #
# Flat parameter vector
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class ParameterSite:
    """One named, constrained parameter block of the flat vector.

    Attributes:
        name: Site name (e.g. ``"z_beta_1"``).
        shape: Shape of the constrained value.
        constraint: numpyro constraint of the constrained value.
    """

    name: str
    shape: tuple[int, ...]
    constraint: Any = field(default_factory=lambda: constraints.real)

    @property
    def transform(self) -> Any:
        """Bijection from the unconstrained space onto the constraint."""
        return biject_to(self.constraint)

    @property
    def unconstrained_shape(self) -> tuple[int, ...]:
        return tuple(self.transform.inverse_shape(self.shape))

    @property
    def size(self) -> int:
        """Number of unconstrained entries."""
        return prod(self.unconstrained_shape)


@dataclass(frozen=True)
class ParameterLayout:
    """Ordered parameter sites and the maps to and from the flat vector."""

    sites: tuple[ParameterSite, ...]
    _offsets: tuple[int, ...] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        offsets = []
        running = 0
        for site in self.sites:
            offsets.append(running)
            running += site.size
        object.__setattr__(self, "_offsets", tuple(offsets))

    @property
    def size(self) -> int:
        """Length of the flat unconstrained vector."""
        return sum(site.size for site in self.sites)

    @property
    def site_names(self) -> tuple[str, ...]:
        return tuple(site.name for site in self.sites)

    @property
    def names(self) -> list[str]:
        """One label per entry of the flat vector, e.g. ``"z_beta_1[0]"``."""
        out = []
        for site in self.sites:
            shape = site.unconstrained_shape
            if shape == ():
                out.append(site.name)
                continue
            for idx in np.ndindex(*shape):
                out.append(f"{site.name}[{','.join(str(i) for i in idx)}]")
        return out

    def __contains__(self, name: str) -> bool:
        return name in self.site_names

    def site(self, name: str) -> ParameterSite:
        for site in self.sites:
            if site.name == name:
                return site
        msg = f"No parameter site named {name!r}."
        raise KeyError(msg)

    def unravel(self, x: Any) -> dict[str, Any]:
        """Split a flat unconstrained vector into per-site arrays."""
        x = jnp.asarray(x)
        if x.shape != (self.size,):
            msg = f"Expected a flat vector of length {self.size}, got shape {x.shape}."
            raise ValueError(msg)
        out = {}
        for site, start in zip(self.sites, self._offsets, strict=True):
            block = x[start : start + site.size]
            out[site.name] = block.reshape(site.unconstrained_shape)
        return out

    def constrain_with_jacobian(self, x: Any) -> tuple[dict[str, Any], Any]:
        """Map a flat vector to constrained parameters.

        Returns:
            ``(params, log_det)`` where *log_det* is the summed
            log-absolute-Jacobian of all bijections.
        """
        params = {}
        log_det = jnp.zeros(())
        for name, u in self.unravel(x).items():
            transform = self.site(name).transform
            value = transform(u)
            params[name] = value
            log_det = log_det + jnp.sum(transform.log_abs_det_jacobian(u, value))
        return params, log_det

    def constrain(self, x: Any) -> dict[str, Any]:
        params, _ = self.constrain_with_jacobian(x)
        return params

    def unconstrain(self, params: dict[str, Any]) -> Any:
        """Inverse of :meth:`constrain`: constrained parameters to a flat vector."""
        missing = [name for name in self.site_names if name not in params]
        if missing:
            msg = f"Missing parameter(s): {', '.join(missing)}."
            raise KeyError(msg)
        blocks = []
        for site in self.sites:
            value = jnp.asarray(params[site.name], dtype=jnp.result_type(float))
            value = value.reshape(site.shape)
            blocks.append(jnp.ravel(site.transform.inv(value)))
        if not blocks:
            return jnp.zeros((0,))
        return jnp.concatenate(blocks)


_INTERCEPT_CONSTRAINTS = {
    "unbounded": constraints.real,
    "lower": constraints.greater_than(0.0),
    "upper": constraints.less_than(0.0),
}


def build_parameter_layout(data: MvmerData) -> ParameterLayout:
    """Declare the parameter sites of *data* in flat-vector order."""
    sites: list[ParameterSite] = []
    submodels = list(enumerate(data.submodels, start=1))

    for m, sub in submodels:
        if sub.intercept_type != "none":
            sites.append(
                ParameterSite(f"gamma_{m}", (), _INTERCEPT_CONSTRAINTS[sub.intercept_type])
            )
    for m, sub in submodels:
        if sub.n_coefs:
            sites.append(ParameterSite(f"z_beta_{m}", (sub.n_coefs,)))

    if isinstance(data.covariance_prior, DecovPrior):
        decov = data.decov_layout
        if decov.q:
            sites.append(ParameterSite("z_b", (decov.q,)))
        if decov.len_z_T:
            sites.append(ParameterSite("z_T", (decov.len_z_T,)))
        if decov.len_rho:
            sites.append(ParameterSite("rho", (decov.len_rho,), constraints.unit_interval))
        if decov.len_concentration:
            sites.append(
                ParameterSite("zeta", (decov.len_concentration,), constraints.positive)
            )
        if decov.n_terms:
            sites.append(ParameterSite("tau", (decov.n_terms,), constraints.positive))
    else:
        for f, (factor, partition) in enumerate(
            zip(data.grouping_factors, data.partitions, strict=True), start=1
        ):
            bK = partition.total
            sites.append(ParameterSite(f"b_sd_{f}", (bK,), constraints.positive))
            sites.append(ParameterSite(f"z_b_mat_{f}", (bK, factor.n_groups)))
            if bK > 1:
                sites.append(
                    ParameterSite(f"b_cholesky_{f}", (bK, bK), constraints.corr_cholesky)
                )

    for m, sub in submodels:
        if sub.family.has_aux:
            sites.append(ParameterSite(f"aux_unscaled_{m}", (), constraints.positive))

    latent = {
        m: {
            suffix: (shape, constraint)
            for suffix, shape, constraint in coefficient_latent_sites(
                sub.coefficient_prior, sub.n_coefs
            )
        }
        for m, sub in submodels
    }
    for suffix in ("global", "local", "mix", "ool", "caux"):
        for m, _ in submodels:
            if suffix in latent[m]:
                shape, constraint = latent[m][suffix]
                sites.append(ParameterSite(f"{suffix}_{m}", shape, constraint))

    layout = ParameterLayout(sites=tuple(sites))
    logger.debug(
        "Parameter layout: %d sites, %d unconstrained entries.",
        len(layout.sites),
        layout.size,
    )
    return layout
