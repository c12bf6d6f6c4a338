"""Independent variable evaluator: a leaf initialized once from parameters."""

from typing import Any

from hydrocore.errors import InitializationError
from hydrocore.evaluators.base import Evaluator
from hydrocore.fields.base import FieldTemplate, key_domain
from hydrocore.params.schema import FieldInitParams, IOParams


class IndependentVariableEvaluator(Evaluator):
    """Leaf field set from constants (globally or per region) on first use.

    The field lives on cells, or on faces with entity="face".
    """

    def __init__(
        self,
        key: str,
        init: FieldInitParams,
        num_dofs: int = 1,
        io: IOParams | None = None,
        entity: str = "cell",
    ):
        super().__init__([key], io={key: io} if io is not None else None)
        self.init = init
        self.num_dofs = num_dofs
        self.entity = entity

    @property
    def key(self) -> str:
        return self.my_keys[0]

    def has_field_changed(self, state: Any, request: str) -> bool:
        if self._generation == 0:
            field = state.get_field(self.key)
            if not field.initialize(self.key, self.init.constants, self.init.blocks):
                raise InitializationError(
                    f"Independent variable '{self.key}' has no value for "
                    f"{field.subfield_names()}"
                )
            self._generation += 1
        return self._report(request)

    def ensure_compatibility(self, state: Any) -> None:
        mesh = state.get_mesh(key_domain(self.key))
        if self.entity == "face":
            template = FieldTemplate.faces(mesh, self.num_dofs)
        else:
            template = FieldTemplate.cells(mesh, self.num_dofs)
        state.require_field(self.key, owner=self.key, template=template)
        self._apply_io(state)
