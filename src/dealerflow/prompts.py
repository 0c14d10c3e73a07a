from dataclasses import dataclass

from dealerflow.stages import Stage


@dataclass(frozen=True)
class StageRules:
    must: tuple
    must_not: tuple
    max_response_length: int


STAGE_PROMPTS = {
    Stage.GREETING: """ESTAGIO: BOAS-VINDAS
- Receba o cliente com simpatia e pergunte como pode ajudar.
- Nada de oferecer carros ainda.
- Uma pergunta por vez.""",
    Stage.QUALIFYING: """ESTAGIO: QUALIFICACAO
- Descubra o que o cliente procura: categoria, faixa de valor, forma de pagamento.
- No maximo duas perguntas de qualificacao.
- Com informacao suficiente, passe a mostrar opcoes.""",
    Stage.BROWSING: """ESTAGIO: NAVEGACAO
- Apresente os veiculos encontrados com os principais destaques.
- Pergunte se quer detalhes de algum ou ver outras opcoes.""",
    Stage.COMPARING: """ESTAGIO: COMPARACAO
- Compare os modelos lado a lado, com pontos fortes e fracos de cada um.
- Ajude na decisao sem pressionar. Sugira um test drive quando fizer sentido.""",
    Stage.NEGOTIATING: """ESTAGIO: NEGOCIACAO
- Acolha a objecao e entenda o motivo real.
- Ofereca alternativas como outro modelo ou outra forma de pagamento.
- Nunca invente descontos ou valores de tabela.""",
    Stage.SCHEDULING: """ESTAGIO: AGENDAMENTO
- Facilite a visita: ofereca horarios e confirme o contato.
- Prepare a passagem para o consultor.""",
    Stage.HANDOFF: """ESTAGIO: ENCAMINHAMENTO
- Avise que um consultor vai continuar o atendimento.
- Resuma o que o cliente procura e se despeca com cordialidade.""",
    Stage.IDLE: """ESTAGIO: INATIVO
- Cliente sem engajamento recente.
- Respostas curtas, ofereca ajuda sem insistir.""",
}

STAGE_RULES = {
    Stage.GREETING: StageRules(
        must=("Seja acolhedor", "Pergunte como pode ajudar"),
        must_not=("Nao ofereca carros especificos", "Nao pergunte o orcamento", "Nao cite precos"),
        max_response_length=200,
    ),
    Stage.QUALIFYING: StageRules(
        must=("Descubra o interesse do cliente",),
        must_not=("Nao liste mais de 3 carros", "Nao repita uma pergunta ja feita"),
        max_response_length=300,
    ),
    Stage.BROWSING: StageRules(
        must=("Mostre opcoes relevantes", "Destaque as caracteristicas principais"),
        must_not=("Nao liste mais de 6 carros de uma vez", "Nao pressione para fechar"),
        max_response_length=400,
    ),
    Stage.COMPARING: StageRules(
        must=("Compare lado a lado",),
        must_not=("Nao force uma decisao", "Nao descarte opcoes sem motivo"),
        max_response_length=400,
    ),
    Stage.NEGOTIATING: StageRules(
        must=("Trate objecoes com empatia", "Encaminhe para o consultor quando preciso"),
        must_not=("Nao encerre a conversa", "Nao invente descontos ou valores FIPE"),
        max_response_length=350,
    ),
    Stage.SCHEDULING: StageRules(
        must=("Facilite o agendamento", "Confirme os dados de contato"),
        must_not=("Nao volte a mostrar carros", "Nao faca novas perguntas de qualificacao"),
        max_response_length=250,
    ),
    Stage.HANDOFF: StageRules(
        must=("Confirme que o consultor foi acionado",),
        must_not=("Nao faca perguntas de qualificacao", "Nao mostre novos carros"),
        max_response_length=200,
    ),
    Stage.IDLE: StageRules(
        must=("Seja breve",),
        must_not=("Nao envie mensagens longas", "Nao pressione"),
        max_response_length=150,
    ),
}


def get_stage_prompt(stage: Stage) -> str:
    return STAGE_PROMPTS[stage]


def build_stage_constraints(stage: Stage) -> str:
    """Stage prompt plus its must / must-not rules, ready to drop into a system prompt."""
    rules = STAGE_RULES[stage]
    lines = [STAGE_PROMPTS[stage], "", "PROIBIDO neste estagio:"]
    lines += [f"- {rule}" for rule in rules.must_not]
    lines += ["", "OBRIGATORIO neste estagio:"]
    lines += [f"- {rule}" for rule in rules.must]
    lines += ["", f"Limite de resposta: {rules.max_response_length} caracteres"]
    return "\n".join(lines)
