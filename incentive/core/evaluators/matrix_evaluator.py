"""
MatrixLookupEvaluator - pays the cell at a row band / column band intersection.
"""

from incentive.core.models import ComponentResult

from .base_evaluator import BaseEvaluator, find_band


class MatrixLookupEvaluator(BaseEvaluator):
    """
    Two-dimensional tier matrix.

    Config:
    - row_metric / column_metric: Plan metric names placed on each axis
    - row_bands / column_bands: Bands per axis, inclusive lower / exclusive upper
    - values: values[row][column] payout grid
    """

    def evaluate(self, metrics: dict[str, float | None]) -> ComponentResult:
        config = self.component.matrix_config
        missing = self._missing(metrics, [config.row_metric, config.column_metric])
        if missing:
            return self._no_data(metrics, missing)

        row_value = metrics[config.row_metric]
        column_value = metrics[config.column_metric]
        row_match = find_band(config.row_bands, row_value)
        column_match = find_band(config.column_bands, column_value)

        if row_match is None or column_match is None:
            return self._result(
                0.0,
                metrics,
                outcome="no_band",
                row_value=row_value,
                column_value=column_value,
                row_band=row_match[1].describe() if row_match else None,
                column_band=column_match[1].describe() if column_match else None,
            )

        row_idx, row_band = row_match
        col_idx, column_band = column_match
        return self._result(
            config.values[row_idx][col_idx],
            metrics,
            outcome="matched",
            row_value=row_value,
            column_value=column_value,
            row_band=row_band.describe(),
            column_band=column_band.describe(),
            row_index=row_idx,
            column_index=col_idx,
        )

    @property
    def component_type(self) -> str:
        return "matrix_lookup"
