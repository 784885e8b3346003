"""Canned answers for frequent questions, served without any model call."""

from portfolio_chat.models import Category, ExactMatch

EXACT_MATCHES: list[ExactMatch] = [
    ExactMatch(
        question="who are you",
        answer=(
            "I'm Marvin Romero's portfolio assistant! I can tell you about his background, "
            "skills, projects, and experience. What would you like to know about Marvin?"
        ),
        category=Category.BIO,
        keywords=["who", "you", "assistant", "marvin"],
    ),
    ExactMatch(
        question="what is your name",
        answer=(
            "I'm Marv, Marvin Romero's portfolio assistant. I'm here to help you learn "
            "about his background and work!"
        ),
        category=Category.BIO,
        keywords=["name", "who", "marvin", "marv"],
    ),
    ExactMatch(
        question="how can i contact marvin",
        answer=(
            "You can reach Marvin at marv.a.romero05@gmail.com or connect with him on LinkedIn "
            "at linkedin.com/in/marvin-romero. He's also on GitHub at github.com/marvcodething."
        ),
        category=Category.CONTACT,
        keywords=["contact", "email", "reach", "hire", "linkedin", "github"],
    ),
    ExactMatch(
        question="what programming languages does marvin know",
        answer=(
            "Marvin is skilled in JavaScript/TypeScript, Python, Java, C#, and SQL. He works "
            "with modern frameworks like React, Next.js, Node.js, and Flask."
        ),
        category=Category.SKILLS,
        keywords=["programming", "languages", "skills", "javascript", "python", "react"],
    ),
    ExactMatch(
        question="where does marvin work",
        answer=(
            "Marvin has recent experience as a Software Engineering Intern at DOJi working on "
            "MarketCanvas, and at Occidental College's Biochemistry Department. He's also "
            "Co-Founder and CTO of The Confracted Company."
        ),
        category=Category.EXPERIENCE,
        keywords=["work", "job", "experience", "doji", "occidental", "confracted"],
    ),
    ExactMatch(
        question="is marvin available for hire",
        answer=(
            "Yes! Marvin is actively seeking opportunities. You can contact him at "
            "marv.a.romero05@gmail.com to discuss potential roles or projects."
        ),
        category=Category.CONTACT,
        keywords=["hire", "available", "opportunities", "job", "work", "contact"],
    ),
]
