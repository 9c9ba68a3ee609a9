from workbook.backend.ai.errors import (
	AIServiceError,
	ContractError,
	EmptyResponse,
	FatalGenerationFailure,
	GenerationFailed,
	ParseError,
	ProviderUnconfigured,
	ShapeError,
	TransientGenerationFailure,
)
from workbook.backend.ai.pipeline import TherapeuticPipeline
from workbook.backend.ai.types import (
	ConversationMessage,
	ConversationType,
	Mode,
	PipelineOutcome,
	PipelineRequest,
)

__all__ = [
	"AIServiceError",
	"ContractError",
	"ConversationMessage",
	"ConversationType",
	"EmptyResponse",
	"FatalGenerationFailure",
	"GenerationFailed",
	"Mode",
	"ParseError",
	"PipelineOutcome",
	"PipelineRequest",
	"ProviderUnconfigured",
	"ShapeError",
	"TherapeuticPipeline",
	"TransientGenerationFailure",
]
