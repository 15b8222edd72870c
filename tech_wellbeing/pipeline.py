# tech_wellbeing/pipeline.py
import operator
from langgraph.graph import StateGraph, END
from typing import TypedDict, Annotated, Dict, Optional, List
import pandas as pd
from datetime import datetime
import logging
from pathlib import Path

from tech_wellbeing.config import Config, get_config
from tech_wellbeing.utils.logging_config import log_execution_time

logger = logging.getLogger(__name__)


class PipelineState(TypedDict, total=False):
    """State shared across all agents"""
    # Input
    data_path: str
    project_name: str
    schema: Optional[Dict[str, str]]
    coercion_policy: Optional[str]
    run_models: bool

    # Data loading and normalization
    raw_data: Optional[pd.DataFrame]
    data_info: Optional[dict]
    normalized_data: Optional[pd.DataFrame]
    normalization_report: Optional[object]
    validation_report: Optional[dict]

    # Derived features
    derived_features: Optional[pd.DataFrame]
    derivation_errors: Optional[list]
    analysis_data: Optional[pd.DataFrame]
    feature_report: Optional[dict]

    # Analysis
    group_summaries: Optional[dict]
    correlation_matrix: Optional[pd.DataFrame]
    top_correlations: Optional[list]
    descriptive_statistics: Optional[pd.DataFrame]
    association_results: Optional[list]

    # Models
    model_results: Optional[dict]
    training_report: Optional[dict]

    # Workflow; list fields are merged across the parallel analysis branches
    current_step: str
    next_action: str
    errors: Annotated[List[str], operator.add]
    execution_log: Annotated[List[str], operator.add]


class AnalysisPipeline:
    def __init__(self, config: Optional[Config] = None):
        """Initialize the survey analysis pipeline"""
        self.config = config or get_config()

        # DataFrames travel in the state, so no checkpointer is attached
        self.graph = self._build_graph()
        self.compiled_graph = self.graph.compile()

        logger.info("Analysis pipeline initialized successfully")

    def _build_graph(self) -> StateGraph:
        """Build the LangGraph workflow"""
        from tech_wellbeing.agents.data_agent import DataIngestionAgent
        from tech_wellbeing.agents.feature_agent import FeatureEngineeringAgent
        from tech_wellbeing.agents.summary_agent import GroupSummaryAgent
        from tech_wellbeing.agents.stats_agent import AssociationTestingAgent
        from tech_wellbeing.agents.model_agent import ModelTrainingAgent

        # Initialize agents
        data_agent = DataIngestionAgent(self.config)
        feature_agent = FeatureEngineeringAgent(self.config)
        summary_agent = GroupSummaryAgent(self.config)
        stats_agent = AssociationTestingAgent(self.config)
        model_agent = ModelTrainingAgent(self.config)

        # Create the graph
        workflow = StateGraph(PipelineState)

        # Add nodes
        workflow.add_node("data_ingestion", data_agent.process)
        workflow.add_node("schema_normalization", data_agent.validate)
        workflow.add_node("feature_engineering", feature_agent.engineer_features)
        workflow.add_node("group_summary", summary_agent.summarize)
        workflow.add_node("association_testing", stats_agent.test_associations)
        workflow.add_node("model_training", model_agent.train_models)

        workflow.set_entry_point("data_ingestion")

        # A failed load or fatal schema error ends the run
        workflow.add_conditional_edges(
            "data_ingestion",
            self._route_on_error,
            {
                "proceed": "schema_normalization",
                "error": END
            }
        )

        workflow.add_conditional_edges(
            "schema_normalization",
            self._route_on_error,
            {
                "proceed": "feature_engineering",
                "error": END
            }
        )

        # Summaries and association tests are independent readers of the analysis frame
        workflow.add_conditional_edges(
            "feature_engineering",
            self._route_after_features,
            ["group_summary", "association_testing", END]
        )

        # Joins both branches; the model node skips training when either branch failed
        workflow.add_edge(["group_summary", "association_testing"], "model_training")
        workflow.add_edge("model_training", END)

        return workflow

    def _route_on_error(self, state: PipelineState) -> str:
        """Stop the run when the previous step failed"""
        if state.get("next_action") == "error":
            return "error"
        return "proceed"

    def _route_after_features(self, state: PipelineState):
        """Fan out to the analysis branches unless feature engineering failed"""
        if state.get("next_action") == "error":
            return END
        return ["group_summary", "association_testing"]

    @log_execution_time
    async def run_pipeline(self,
                           data_path: str,
                           project_name: Optional[str] = None,
                           schema: Optional[Dict[str, str]] = None,
                           run_models: bool = True,
                           coercion_policy: Optional[str] = None,
                           output_dir: Optional[str] = None) -> dict:
        """Execute the complete analysis pipeline"""

        if project_name is None:
            project_name = f"wellbeing_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

        # Initial state
        initial_state = PipelineState(
            data_path=str(data_path),
            project_name=project_name,
            schema=schema,
            coercion_policy=coercion_policy,
            run_models=run_models,
            current_step="initialization",
            next_action="data_ingestion",
            errors=[],
            execution_log=[f"Pipeline started at {datetime.now()}"]
        )

        logger.info(f"Starting pipeline for project: {project_name}")

        try:
            final_state = await self.compiled_graph.ainvoke(initial_state)

        except Exception as e:
            logger.error(f"Pipeline failed for {project_name}: {str(e)}")
            return {
                "status": "failed",
                "error": str(e),
                "errors": [str(e)],
                "project_name": project_name
            }

        final_state = dict(final_state)

        if final_state.get("errors"):
            final_state["status"] = "failed"
            final_state["error"] = final_state["errors"][0]
            logger.error(f"Pipeline failed for {project_name}: {final_state['error']}")
        else:
            final_state["status"] = "completed"
            if output_dir is not None:
                from tech_wellbeing.utils.export import export_results
                final_state["exported_files"] = export_results(final_state, Path(output_dir))
            logger.info(f"Pipeline completed successfully for {project_name}")

        final_state["execution_log"] = final_state.get("execution_log", []) + [
            f"Pipeline {final_state['status']} at {datetime.now()}"
        ]
        return final_state


async def run_pipeline(data_path: str,
                       schema: Optional[Dict[str, str]] = None,
                       run_models: bool = True,
                       project_name: Optional[str] = None,
                       config: Optional[Config] = None,
                       output_dir: Optional[str] = None,
                       coercion_policy: Optional[str] = None) -> dict:
    """Build a pipeline and run it once over ``data_path``"""
    pipeline = AnalysisPipeline(config)
    return await pipeline.run_pipeline(
        data_path=data_path,
        project_name=project_name,
        schema=schema,
        run_models=run_models,
        coercion_policy=coercion_policy,
        output_dir=output_dir
    )
