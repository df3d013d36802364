"""Early-outbreak estimation of the reproduction number R."""

from .version_info import VERSION as __version__
from .errors import (
    DegenerateLikelihoodError,
    EarlyRError,
    EmptyProfileError,
    InvalidParameterError,
)
from .incidence import IncidenceSeries
from .simulate.calculate_serial_weights import SerialIntervalDistribution, build
from .simulate.force_of_infection import force_of_infection, unscaled_infectivity
from .simulate.project import simulate_forward, write_projections_csv
from .analytic.likelihood import LikelihoodProfile, estimate, make_r_grid
from .config import EstimationConfig
