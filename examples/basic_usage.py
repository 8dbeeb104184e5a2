"""Basic orchestration example using the built-in DI container."""

import asyncio

from fossil_router.core.config import OrchestratorConfig
from fossil_router.core.container import DIContainer


async def main() -> None:
    orchestrator = DIContainer.create_orchestrator(
        openai_api_key="sk-demo",
        config=OrchestratorConfig(max_cost_per_call=0.05, enable_local_llm=True),
    )

    response = await orchestrator.call_llm(
        {
            "model": "gpt-3.5-turbo",
            "messages": [
                {"role": "system", "content": "Answer in one paragraph."},
                {
                    "role": "user",
                    "content": "Summarize the differences between SQL and NoSQL databases.",
                },
            ],
            "purpose": "content-generation",
            "valueScore": 0.8,
            "context": "production",
        }
    )
    print("Response:", response["choices"][0]["message"]["content"])
    print(orchestrator.generate_usage_report())

    await orchestrator.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
