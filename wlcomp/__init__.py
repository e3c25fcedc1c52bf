"""WL-Comp: water-limited competition among annual plant species.

A deterministic, non-spatial model coupling:
  - Soil water retention (Brooks-Corey water content ↔ potential)
  - Conductance-limited carbon assimilation (implicit root-find per species)
  - Allometric within-season biomass growth with shared soil water depletion
  - Multi-year population dynamics via a fecundity map, iterated to a
    quasi-equilibrium
"""

__version__ = "0.1.0"
