"""StoryFrame 공통 유틸리티 (로깅, 에러, 재시도, Gemini 클라이언트, 프롬프트 빌더)."""
