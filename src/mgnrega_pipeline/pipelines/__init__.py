"""
mgnrega_pipeline.pipelines — End-to-end pipeline orchestrators.

The ingestion module exports a run() async function that builds its
collaborators from settings and returns an IngestionRunResult.

    from mgnrega_pipeline.pipelines import ingestion

    result = await ingestion.run(mode="incremental")
"""
